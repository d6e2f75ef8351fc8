"""Engine error types."""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateResourceError(EngineError):
    """Raised when multiple desired resources share the same id."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Duplicate resource id: {name}")
        self.name = name


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle.

    ``cycle`` is the offending path, closed on its first node
    (e.g. ``["a", "b", "a"]``; a self-reference is ``["c", "c"]``).
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join(cycle)}"
        super().__init__(msg)
        self.cycle = cycle


class DependencyViolation(EngineError):
    """Raised when a plan would break a dependency (e.g. delete a resource still in use)."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        msg = "Plan violates resource dependencies:\n" + "\n".join(f"  - {v}" for v in violations)
        super().__init__(msg)


class UnresolvedReferenceError(EngineError):
    """Raised when a reference is resolved before its producer is provisioned."""

    def __init__(self, resource_id: str, attribute: str, reason: str) -> None:
        super().__init__(f"Cannot resolve ${{{resource_id}.{attribute}}}: {reason}")
        self.resource_id = resource_id
        self.attribute = attribute


class AddressSpaceExhausted(EngineError):
    """Raised when subnets for all zones and tiers do not fit the base block."""

    def __init__(self, cidr: str, message: str) -> None:
        super().__init__(f"Address space {cidr} exhausted: {message}")
        self.cidr = cidr


class ProviderError(EngineError):
    """A provider adapter failed to create/update/delete a single resource."""

    def __init__(self, name: str, action: str, message: str) -> None:
        super().__init__(f"{action} {name} failed: {message}")
        self.name = name
        self.action = action
        self.message = message


class OperationTimedOut(ProviderError):
    """The provider did not report completion within the configured bound."""

    def __init__(self, name: str, action: str, timeout: float) -> None:
        super().__init__(name, action, f"timed out after {timeout:g}s")
        self.timeout = timeout


class StateStackMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different stack."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State stack mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ApplyError(EngineError):
    """Raised when one or more operations of an apply failed.

    Independent branches run to completion before this is raised, so
    ``result`` holds the full picture: what was applied, what failed and
    which dependents were blocked.
    """

    def __init__(self, result: Any) -> None:
        self.result = result
        failures = result.failures()
        names = ", ".join(o.name for o in failures)
        super().__init__(f"{len(failures)} operation(s) failed: {names}")


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C).

    Carries the partial result; in-flight operations have a final status.
    """

    def __init__(self, result: Any) -> None:
        self.result = result
        super().__init__("Apply canceled")
