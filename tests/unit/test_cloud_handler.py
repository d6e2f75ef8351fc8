from __future__ import annotations

import pytest

from stack_provisioner.config.schema import StackSettings
from stack_provisioner.core import CloudProvider, ResourceInstance, SandboxCloud
from stack_provisioner.core.state import State
from stack_provisioner.engine.cloud_handler import CloudResourceHandler
from stack_provisioner.engine.handlers import EngineContext, PendingOperation, PlanContext
from stack_provisioner.resources import (
    BucketResource,
    InstanceResource,
    NetworkResource,
    Reachability,
    TrailResource,
    ref,
)
from stack_provisioner.resources.base import Resource


@pytest.fixture
def ctx(sandbox: SandboxCloud, settings: StackSettings) -> EngineContext:
    return EngineContext(provider=CloudProvider.from_client(sandbox), settings=settings)


def _plan_ctx(*resources: Resource, state: State | None = None) -> PlanContext:
    return PlanContext({r.name: r for r in resources}, state or State(stack="shop-test"))


class TestValidate:
    def test_static_field_cannot_hold_reference(self, ctx: EngineContext) -> None:
        bastion = InstanceResource(
            name="bastion",
            network=ref("vpc", "network_id"),
            reaches=[Reachability(target="${db.name}")],
        )
        errors = CloudResourceHandler().validate(ctx, bastion)
        assert errors == [
            "Resource 'bastion': 'reaches' is needed at plan time "
            "and cannot reference another resource"
        ]

    def test_references_in_regular_fields_are_fine(self, ctx: EngineContext) -> None:
        trail = TrailResource(name="audit", bucket=ref("logs", "arn"))
        assert CloudResourceHandler().validate(ctx, trail) == []


class TestValidatePlan:
    def test_unknown_resource(self, ctx: EngineContext) -> None:
        trail = TrailResource(name="audit", bucket=ref("logs", "arn"))
        errors = CloudResourceHandler().validate_plan(ctx, trail, _plan_ctx(trail))
        assert errors == ["Resource 'audit' references unknown resource 'logs'"]

    def test_unknown_attribute(self, ctx: EngineContext) -> None:
        logs = BucketResource(name="logs", bucket_name="shop-logs")
        trail = TrailResource(name="audit", bucket=ref("logs", "endpoint"))
        errors = CloudResourceHandler().validate_plan(ctx, trail, _plan_ctx(trail, logs))
        assert errors == [
            "Resource 'audit' references unknown attribute 'endpoint' of bucket 'logs'"
        ]

    def test_known_output_attribute(self, ctx: EngineContext) -> None:
        logs = BucketResource(name="logs", bucket_name="shop-logs")
        trail = TrailResource(name="audit", bucket=ref("logs", "arn"))
        assert CloudResourceHandler().validate_plan(ctx, trail, _plan_ctx(trail, logs)) == []

    def test_state_only_reference_is_left_to_scheduler(self, ctx: EngineContext) -> None:
        state = State(stack="shop-test")
        state.resources["logs"] = ResourceInstance(name="logs", resource_type="bucket")
        trail = TrailResource(name="audit", bucket=ref("logs", "arn"))
        errors = CloudResourceHandler().validate_plan(ctx, trail, _plan_ctx(trail, state=state))
        assert errors == []

    def test_unknown_depends_on(self, ctx: EngineContext) -> None:
        vpc = NetworkResource(name="vpc", depends_on=["ghost", "vpc"])
        errors = CloudResourceHandler().validate_plan(ctx, vpc, _plan_ctx(vpc))
        assert errors == ["Resource 'vpc' depends on unknown resource 'ghost'"]


class TestCrud:
    def test_create_poll_read_delete(self, ctx: EngineContext, sandbox: SandboxCloud) -> None:
        handler = CloudResourceHandler()
        logs = BucketResource(name="logs", bucket_name="shop-logs")

        pending = handler.create(ctx, logs, {"bucket_name": "shop-logs"})
        assert pending == PendingOperation(name="logs", action="create", token=pending.token)
        status = handler.poll(ctx, pending)
        assert status.done
        assert status.attributes is not None
        assert status.attributes["arn"] == "arn:aws:s3:::shop-logs"

        prior = ResourceInstance(name="logs", resource_type="bucket", attributes=status.attributes)
        assert handler.read(ctx, prior) == status.attributes

        pending = handler.delete(ctx, prior)
        assert pending is not None
        status = handler.poll(ctx, pending)
        assert status.done
        assert status.attributes is None
        assert sandbox.describe("logs") is None

    def test_delete_of_missing_record_is_noop(
        self, ctx: EngineContext, sandbox: SandboxCloud
    ) -> None:
        prior = ResourceInstance(name="gone", resource_type="bucket")
        assert CloudResourceHandler().delete(ctx, prior) is None
        assert sandbox.requests == []

    def test_failed_operation_reports_error(
        self, ctx: EngineContext, sandbox: SandboxCloud
    ) -> None:
        handler = CloudResourceHandler()
        sandbox.fail_next("logs", "create", "bucket name taken")
        logs = BucketResource(name="logs", bucket_name="shop-logs")
        status = handler.poll(ctx, handler.create(ctx, logs, {"bucket_name": "shop-logs"}))
        assert status.done
        assert status.error == "bucket name taken"

    def test_cancel_delegates_to_sandbox(self, ctx: EngineContext, sandbox: SandboxCloud) -> None:
        handler = CloudResourceHandler()
        sandbox.stall("logs")
        logs = BucketResource(name="logs", bucket_name="shop-logs")
        pending = handler.create(ctx, logs, {"bucket_name": "shop-logs"})
        assert not handler.poll(ctx, pending).done
        assert handler.cancel(ctx, pending) is True
        assert handler.poll(ctx, pending).error == "operation canceled"
