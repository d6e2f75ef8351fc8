"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). This module implements a minimal version of that idea: each operation
lists dependencies on other operations and applies itself in two steps.

- ``execute`` runs on a worker thread: it resolves references, calls the
  provider and waits for the operation to finish. It never touches state.
- ``commit`` runs on the driver thread with the worker's result: it records
  the outcome in state and publishes attributes for dependents.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from stack_provisioner.core.state import ResourceInstance, State, compute_attributes_hash
from stack_provisioner.engine.diff import diff_attributes
from stack_provisioner.engine.errors import OperationTimedOut, ProviderError
from stack_provisioner.engine.handlers import PendingOperation
from stack_provisioner.engine.resolver import resolve_references
from stack_provisioner.engine.types import OutcomeStatus
from stack_provisioner.resources.markers import collect_compare_strategies

if TYPE_CHECKING:
    from stack_provisioner.engine.handlers import EngineContext, ResourceHandler
    from stack_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
    from stack_provisioner.engine.resolver import AttributeTable
    from stack_provisioner.engine.types import ApplyOptions, ResourceChange

logger = logging.getLogger(__name__)


class _Canceled(Exception):
    """An in-flight operation was aborted through the handler's cancel hook."""


@dataclass
class Runtime:
    """Everything an operation needs while it runs."""

    ctx: EngineContext
    registry: ResourceTypeRegistry
    table: AttributeTable
    options: ApplyOptions
    cancel_event: threading.Event = field(default_factory=threading.Event)


@dataclass
class Execution:
    """What a worker reports back for one operation."""

    status: OutcomeStatus
    attributes: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    error: str | None = None
    duration_seconds: float = 0.0


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def execute(self, runtime: Runtime) -> Execution:
        """Perform the provider side of the operation (worker thread)."""

    def commit(self, state: State, runtime: Runtime, execution: Execution) -> bool:
        """Record *execution* in state (driver thread).

        Returns:
            True if state should be persisted (serial bump + write).
        """


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def execute(self, runtime: Runtime) -> Execution:
        _ = runtime
        return Execution(status=OutcomeStatus.APPLIED)

    def commit(self, state: State, runtime: Runtime, execution: Execution) -> bool:
        _ = state, runtime, execution
        return False


def _desired_object(change: ResourceChange, reg: ResourceTypeRegistration, *, action: str) -> Any:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {action}: {change.name}")

    desired_obj = reg.model.model_validate(change.desired)
    if desired_obj.name != change.name:
        raise ValueError(f"Desired name mismatch for {action}: {change.name} != {desired_obj.name}")
    return desired_obj


def _await_completion(
    runtime: Runtime, handler: ResourceHandler[Any], pending: PendingOperation
) -> dict[str, Any] | None:
    """Poll *pending* until it finishes, times out or is canceled."""
    opts = runtime.options
    timeout = opts.timeout_seconds
    deadline = None if timeout is None else time.monotonic() + timeout
    cancel_requested = False
    while True:
        status = handler.poll(runtime.ctx, pending)
        if status.done:
            if status.error is not None:
                raise ProviderError(pending.name, pending.action, status.error)
            return status.attributes

        if runtime.cancel_event.is_set() and not cancel_requested:
            cancel_requested = True
            if handler.cancel(runtime.ctx, pending):
                raise _Canceled(pending.name)
            logger.info("%s %s cannot be aborted, waiting for it", pending.action, pending.name)

        if deadline is not None and time.monotonic() >= deadline:
            if handler.cancel(runtime.ctx, pending):
                logger.debug("Aborted %s %s after timeout", pending.action, pending.name)
            raise OperationTimedOut(pending.name, pending.action, timeout)

        time.sleep(opts.poll_interval_seconds)


def _settle(
    runtime: Runtime,
    handler: ResourceHandler[Any],
    result: dict[str, Any] | PendingOperation | None,
) -> dict[str, Any] | None:
    if isinstance(result, PendingOperation):
        return _await_completion(runtime, handler, result)
    return result


def _guarded(name: str, action: str, fn: Any) -> Execution:
    """Run *fn* and turn provider failures into an ``Execution``."""
    start = time.monotonic()
    try:
        execution = fn()
    except OperationTimedOut as exc:
        logger.warning("%s", exc)
        execution = Execution(status=OutcomeStatus.TIMED_OUT, error=str(exc))
    except _Canceled:
        execution = Execution(status=OutcomeStatus.CANCELED, error="canceled")
    except ProviderError as exc:
        logger.warning("%s", exc)
        execution = Execution(status=OutcomeStatus.FAILED, error=str(exc))
    except Exception as exc:
        err = ProviderError(name, action, str(exc) or type(exc).__name__)
        logger.warning("%s", err, exc_info=logger.isEnabledFor(logging.DEBUG))
        execution = Execution(status=OutcomeStatus.FAILED, error=str(err))
    execution.duration_seconds = time.monotonic() - start
    return execution


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    resolved: dict[str, Any] | None = None

    def execute(self, runtime: Runtime) -> Execution:
        assert self.change is not None
        change = self.change

        def run() -> Execution:
            reg = runtime.registry.get(change.resource_type)
            desired_obj = _desired_object(change, reg, action="create")
            self.resolved = resolve_references(change.planned or {}, runtime.table)
            result = reg.handler.create(runtime.ctx, desired_obj, self.resolved)
            attrs = _settle(runtime, reg.handler, result)
            if attrs is None:
                attrs = dict(self.resolved)
            return Execution(status=OutcomeStatus.APPLIED, attributes=attrs, planned=self.resolved)

        return _guarded(change.name, "create", run)

    def commit(self, state: State, runtime: Runtime, execution: Execution) -> bool:
        assert self.change is not None
        change = self.change
        now = datetime.now(UTC)
        if execution.status == OutcomeStatus.APPLIED:
            attrs = execution.attributes or {}
            state.resources[change.name] = ResourceInstance(
                name=change.name,
                resource_type=change.resource_type,
                attributes=attrs,
                attributes_hash=compute_attributes_hash(attrs),
                dependencies=list(change.depends_on),
                created_at=now,
                updated_at=now,
            )
            runtime.table.publish(change.name, attrs)
            return True
        if execution.status == OutcomeStatus.TIMED_OUT:
            # The provider may still finish; record it so the next pass re-creates it.
            attrs = dict(self.resolved or change.planned or {})
            state.resources[change.name] = ResourceInstance(
                name=change.name,
                resource_type=change.resource_type,
                attributes=attrs,
                attributes_hash=compute_attributes_hash(attrs),
                dependencies=list(change.depends_on),
                status="tainted",
                created_at=now,
                updated_at=now,
            )
            return True
        return False


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    prior: ResourceInstance
    deps: list[str] = field(default_factory=list)

    def execute(self, runtime: Runtime) -> Execution:
        assert self.change is not None
        change = self.change

        def run() -> Execution:
            reg = runtime.registry.get(change.resource_type)
            desired_obj = _desired_object(change, reg, action="update")
            planned = resolve_references(change.planned or {}, runtime.table)

            # Inputs unknown at plan time may turn out unchanged.
            strategies = collect_compare_strategies(reg.model)
            if not diff_attributes(planned, self.prior.attributes, strategies):
                logger.debug("Update of %s is a no-op after resolving inputs", change.name)
                return Execution(
                    status=OutcomeStatus.UNCHANGED,
                    attributes=dict(self.prior.attributes),
                    planned=planned,
                )

            result = reg.handler.update(runtime.ctx, desired_obj, planned, self.prior)
            attrs = _settle(runtime, reg.handler, result)
            if attrs is None:
                attrs = {**self.prior.attributes, **planned}
            return Execution(status=OutcomeStatus.APPLIED, attributes=attrs, planned=planned)

        return _guarded(change.name, "update", run)

    def commit(self, state: State, runtime: Runtime, execution: Execution) -> bool:
        assert self.change is not None
        change = self.change
        inst = state.resources[change.name]
        if execution.status == OutcomeStatus.APPLIED:
            attrs = execution.attributes or {}
            inst.attributes = attrs
            inst.attributes_hash = compute_attributes_hash(attrs)
            inst.dependencies = list(change.depends_on)
            inst.status = "provisioned"
            inst.updated_at = datetime.now(UTC)
            runtime.table.publish(change.name, attrs)
            return True
        if execution.status == OutcomeStatus.UNCHANGED:
            runtime.table.publish(change.name, inst.attributes)
            if sorted(inst.dependencies) != sorted(change.depends_on):
                inst.dependencies = list(change.depends_on)
                return True
            return False
        if execution.status == OutcomeStatus.TIMED_OUT:
            inst.status = "tainted"
            inst.updated_at = datetime.now(UTC)
            return True
        return False


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange | None
    prior: ResourceInstance
    deps: list[str] = field(default_factory=list)

    def execute(self, runtime: Runtime) -> Execution:
        assert self.change is not None
        change = self.change

        def run() -> Execution:
            reg = runtime.registry.get(change.resource_type)
            result = reg.handler.delete(runtime.ctx, self.prior)
            _settle(runtime, reg.handler, result)
            return Execution(status=OutcomeStatus.APPLIED)

        return _guarded(change.name, "delete", run)

    def commit(self, state: State, runtime: Runtime, execution: Execution) -> bool:
        assert self.change is not None
        name = self.change.name
        if execution.status == OutcomeStatus.APPLIED:
            state.resources.pop(name, None)
            runtime.table.withdraw(name)
            return True
        if execution.status == OutcomeStatus.TIMED_OUT and name in state.resources:
            state.resources[name].status = "tainted"
            state.resources[name].updated_at = datetime.now(UTC)
            return True
        return False
