"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from stack_provisioner.core.state import ResourceInstance
from stack_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from stack_provisioner.config.schema import StackSettings
    from stack_provisioner.core import CloudProvider
    from stack_provisioner.core.state import State

R = TypeVar("R", bound=Resource)


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers."""

    provider: CloudProvider
    settings: StackSettings

    @property
    def stack(self) -> str:
        return self.settings.stack_name


@dataclass(frozen=True)
class PendingOperation:
    """A mutation the provider accepted but has not finished yet."""

    name: str
    action: str
    token: str


@dataclass(frozen=True)
class OperationStatus:
    """Result of polling a :class:`PendingOperation`.

    ``attributes`` is set when a create/update finished; ``error`` when the
    provider reports the operation failed.
    """

    done: bool
    attributes: dict[str, Any] | None = None
    error: str | None = None


class PlanContext:
    """Merged view of desired and existing resources for plan-level validation.

    Provides name-based lookups across both planned (desired) and existing
    (state) resources, with desired taking precedence.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._desired = dict(all_desired)
        self._existing = dict(state.resources)

    def has_resource(self, name: str) -> bool:
        """Check if a resource with this name exists in desired or state."""
        return self.resource_type_of(name) is not None

    def resource_type_of(self, name: str) -> str | None:
        if name in self._desired:
            return self._desired[name].resource_type
        inst = self._existing.get(name)
        return None if inst is None else inst.resource_type

    def attribute_names(self, name: str) -> frozenset[str] | None:
        """Attributes a desired resource exposes to references."""
        r = self._desired.get(name)
        return None if r is None else type(r).attribute_names()


class ResourceHandler(Generic[R]):
    """Base class for resource handlers (provider adapters).

    Handlers translate resources into provider calls. Subclass and override
    the CRUD methods. Validation methods are optional.

    ``create``, ``update`` and ``delete`` may finish synchronously (return the
    stored attributes, or ``None`` for delete) or hand back a
    :class:`PendingOperation` that the engine polls with :meth:`poll`.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Cross-resource validation with access to all resources.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Describe the resource. Return None if it no longer exists."""
        raise NotImplementedError

    def create(
        self, ctx: EngineContext, desired: R, planned: dict[str, Any]
    ) -> dict[str, Any] | PendingOperation:
        """Create the resource from its resolved *planned* attributes."""
        raise NotImplementedError

    def update(
        self,
        ctx: EngineContext,
        desired: R,
        planned: dict[str, Any],
        prior: ResourceInstance,
    ) -> dict[str, Any] | PendingOperation:
        """Update the resource to its resolved *planned* attributes."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> PendingOperation | None:
        """Delete the resource."""
        raise NotImplementedError

    def poll(self, ctx: EngineContext, pending: PendingOperation) -> OperationStatus:
        """Report progress of an operation returned by a mutation."""
        raise NotImplementedError

    def cancel(self, ctx: EngineContext, pending: PendingOperation) -> bool:
        """Abort an in-flight operation. Return False when unsupported or too late."""
        _ = ctx, pending
        return False
