"""Generic handler implementing CRUD against the cloud control plane."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from stack_provisioner.engine.handlers import OperationStatus, PendingOperation, ResourceHandler
from stack_provisioner.resources.markers import static_fields
from stack_provisioner.resources.references import has_references

if TYPE_CHECKING:
    from stack_provisioner.core.sandbox import SandboxCloud
    from stack_provisioner.core.state import ResourceInstance
    from stack_provisioner.engine.handlers import EngineContext, PlanContext
    from stack_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


class CloudResourceHandler(ResourceHandler["Resource"]):
    """CRUD handler shared by every resource type.

    The control plane is addressed by resource id; the type only selects
    which identifiers the provider generates. All mutations are asynchronous.
    """

    def _client(self, ctx: EngineContext) -> SandboxCloud:
        return ctx.provider.client

    def validate(self, ctx: EngineContext, desired: Resource) -> list[str]:
        _ = ctx
        errors: list[str] = []
        for field in static_fields(desired):
            value = getattr(desired, field)
            dumped = value if isinstance(value, str) else desired.model_dump(include={field})
            if has_references(dumped):
                errors.append(
                    f"Resource '{desired.name}': '{field}' is needed at plan time "
                    "and cannot reference another resource"
                )
        return errors

    def validate_plan(
        self, ctx: EngineContext, desired: Resource, plan_ctx: PlanContext
    ) -> list[str]:
        """Check that every reference and ``depends_on`` entry points somewhere valid.

        Ids that only exist in state are left to the scheduler, which reports
        them as dependency violations (the resource is about to be deleted).
        """
        _ = ctx
        errors: list[str] = []
        for ref in desired.references():
            if ref.resource_id == desired.name:
                continue  # reported as a cycle
            if not plan_ctx.has_resource(ref.resource_id):
                errors.append(
                    f"Resource '{desired.name}' references unknown resource '{ref.resource_id}'"
                )
                continue
            names = plan_ctx.attribute_names(ref.resource_id)
            if names is not None and ref.root_attribute not in names:
                rtype = plan_ctx.resource_type_of(ref.resource_id)
                errors.append(
                    f"Resource '{desired.name}' references unknown attribute "
                    f"'{ref.root_attribute}' of {rtype} '{ref.resource_id}'"
                )
        for dep in desired.depends_on:
            if dep == desired.name:
                continue  # reported as a cycle
            if not plan_ctx.has_resource(dep):
                errors.append(f"Resource '{desired.name}' depends on unknown resource '{dep}'")
        return errors

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        return self._client(ctx).describe(prior.name)

    def create(
        self, ctx: EngineContext, desired: Resource, planned: dict[str, Any]
    ) -> PendingOperation:
        token = self._client(ctx).submit("create", desired.resource_type, desired.name, planned)
        logger.debug("Requested create of %s (%s)", desired.address, token)
        return PendingOperation(name=desired.name, action="create", token=token)

    def update(
        self,
        ctx: EngineContext,
        desired: Resource,
        planned: dict[str, Any],
        prior: ResourceInstance,
    ) -> PendingOperation:
        _ = prior
        token = self._client(ctx).submit("update", desired.resource_type, desired.name, planned)
        logger.debug("Requested update of %s (%s)", desired.address, token)
        return PendingOperation(name=desired.name, action="update", token=token)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> PendingOperation | None:
        client = self._client(ctx)
        if client.describe(prior.name) is None:
            # Already gone - nothing to do.
            return None
        token = client.submit("delete", prior.resource_type, prior.name)
        logger.debug("Requested delete of %s (%s)", prior.address, token)
        return PendingOperation(name=prior.name, action="delete", token=token)

    def poll(self, ctx: EngineContext, pending: PendingOperation) -> OperationStatus:
        client = self._client(ctx)
        op = client.poll(pending.token)
        if op.state == "pending":
            return OperationStatus(done=False)
        if op.state == "succeeded":
            attrs = None if op.kind == "delete" else client.describe(op.name)
            return OperationStatus(done=True, attributes=attrs)
        return OperationStatus(done=True, error=op.error or f"operation {op.state}")

    def cancel(self, ctx: EngineContext, pending: PendingOperation) -> bool:
        return self._client(ctx).cancel(pending.token)
