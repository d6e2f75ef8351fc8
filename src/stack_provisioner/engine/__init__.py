"""Plan and apply engine for stack resources."""

from stack_provisioner.engine.engine import StackEngine
from stack_provisioner.engine.errors import (
    AddressSpaceExhausted,
    ApplyCanceled,
    ApplyError,
    DependencyCycleError,
    DependencyViolation,
    DuplicateResourceError,
    EngineError,
    OperationTimedOut,
    ProviderError,
    StalePlanError,
    StateLockError,
    StateStackMismatchError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from stack_provisioner.engine.handlers import (
    EngineContext,
    OperationStatus,
    PendingOperation,
    PlanContext,
    ResourceHandler,
)
from stack_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from stack_provisioner.engine.types import (
    Action,
    ApplyOptions,
    ApplyResult,
    DriverPhase,
    OperationOutcome,
    OutcomeStatus,
    Plan,
    PlanMetadata,
    ResourceChange,
    RunReport,
)

__all__ = [
    "Action",
    "AddressSpaceExhausted",
    "ApplyCanceled",
    "ApplyError",
    "ApplyOptions",
    "ApplyResult",
    "DependencyCycleError",
    "DependencyViolation",
    "DriverPhase",
    "DuplicateResourceError",
    "EngineContext",
    "EngineError",
    "OperationOutcome",
    "OperationStatus",
    "OperationTimedOut",
    "OutcomeStatus",
    "PendingOperation",
    "Plan",
    "PlanContext",
    "PlanMetadata",
    "ProviderError",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RunReport",
    "StackEngine",
    "StalePlanError",
    "StateLockError",
    "StateStackMismatchError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
]
