from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from unittest.mock import MagicMock

import pytest

from stack_provisioner.config.schema import StackSettings
from stack_provisioner.core import CloudProvider, ResourceInstance, SandboxCloud
from stack_provisioner.core.state import State
from stack_provisioner.engine import StackEngine
from stack_provisioner.engine.errors import ApplyCanceled, ApplyError
from stack_provisioner.engine.cloud_handler import CloudResourceHandler
from stack_provisioner.engine.handlers import EngineContext, PendingOperation, ResourceHandler
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.engine.types import Action, ApplyOptions, OutcomeStatus, ResourceChange
from stack_provisioner.resources import BucketResource, TrailResource, ref
from stack_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Callable


class Task(Resource):
    resource_type: ClassVar[str] = "task"


class RendezvousHandler(ResourceHandler[Task]):
    """Each create waits until ``parties`` creates are running at once."""

    def __init__(self, parties: int, timeout: float) -> None:
        self.barrier = threading.Barrier(parties, timeout=timeout)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        _ = ctx
        return dict(prior.attributes)

    def create(self, ctx: EngineContext, desired: Task, planned: dict[str, Any]) -> dict[str, Any]:
        _ = ctx, desired
        self.barrier.wait()
        return dict(planned)


class NonAbortableHandler(CloudResourceHandler):
    """Control plane handler whose operations run to completion once started."""

    def cancel(self, ctx: EngineContext, pending: PendingOperation) -> bool:
        _ = ctx, pending
        return False


def _bucket(name: str) -> BucketResource:
    return BucketResource(name=name, bucket_name=f"shop-{name}")


def _rendezvous_engine(
    tmp_path: Path, *, max_workers: int, timeout: float = 5
) -> StackEngine:
    registry = ResourceTypeRegistry()
    registry.register(Task, RendezvousHandler(parties=2, timeout=timeout))
    return StackEngine(
        provider=CloudProvider.from_client(MagicMock()),
        settings=StackSettings(project="shop", environment="test"),
        state_path=tmp_path / "state.json",
        registry=registry,
        options=ApplyOptions(max_workers=max_workers, poll_interval_seconds=0),
    )


class TestConcurrency:
    def test_independent_operations_run_in_parallel(self, tmp_path: Path) -> None:
        engine = _rendezvous_engine(tmp_path, max_workers=2)
        result = engine.apply(engine.plan([Task(name="a"), Task(name="b")]))
        assert [o.status for o in result.outcomes] == [OutcomeStatus.APPLIED] * 2
        assert State.load(engine.state_path).serial == 2

    def test_single_worker_runs_one_at_a_time(self, tmp_path: Path) -> None:
        engine = _rendezvous_engine(tmp_path, max_workers=1, timeout=0.2)
        with pytest.raises(ApplyError) as exc_info:
            engine.apply(engine.plan([Task(name="a"), Task(name="b")]))
        # The first create waits for a partner that is never started.
        outcome = exc_info.value.result.outcome("a")
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "create a failed: BrokenBarrierError"

    def test_outcomes_follow_plan_order(self, make_engine: Callable[..., StackEngine]) -> None:
        engine = make_engine(max_workers=4)
        plan = engine.plan([_bucket("zeta"), _bucket("alpha"), _bucket("mid")])
        result = engine.apply(plan)
        assert [o.name for o in result.outcomes] == ["alpha", "mid", "zeta"]
        assert {c.name for c in result.applied} == {"alpha", "mid", "zeta"}


class TestTimeout:
    def test_stalled_create_times_out_and_blocks_dependents(
        self, make_engine: Callable[..., StackEngine], sandbox: SandboxCloud
    ) -> None:
        engine = make_engine(timeout_seconds=0.05)
        resources = [
            _bucket("logs"),
            TrailResource(name="audit", bucket=ref("logs", "arn")),
            _bucket("assets"),
        ]
        sandbox.stall("logs")

        with pytest.raises(ApplyError) as exc_info:
            engine.apply(engine.plan(resources))

        result = exc_info.value.result
        statuses = {o.name: o.status for o in result.outcomes}
        assert statuses == {
            "assets": OutcomeStatus.APPLIED,
            "logs": OutcomeStatus.TIMED_OUT,
            "audit": OutcomeStatus.BLOCKED,
        }
        assert result.outcome("audit").blocked_by == ["logs"]
        assert result.outcome("logs").error == "create logs failed: timed out after 0.05s"

        state = State.load(engine.state_path)
        assert state.resources["logs"].tainted
        assert "audit" not in state.resources
        assert "logs.arn" not in state.outputs

        plan = engine.plan(resources, refresh=False)
        logs_change = next(c for c in plan.changes if c.name == "logs")
        assert logs_change.action == Action.CREATE
        assert logs_change.reason == "tainted"

        sandbox.release("logs")
        engine.apply(plan)
        assert sandbox.names() == ["assets", "audit", "logs"]
        assert not State.load(engine.state_path).resources["logs"].tainted


class TestCancel:
    def test_cancel_stops_unstarted_operations(
        self, make_engine: Callable[..., StackEngine], sandbox: SandboxCloud
    ) -> None:
        engine = make_engine(max_workers=1)
        cancel = threading.Event()

        def progress(change: ResourceChange, event: str) -> None:
            if event == "start":
                cancel.set()

        plan = engine.plan([_bucket("a"), _bucket("b"), _bucket("c")])
        with pytest.raises(ApplyCanceled) as exc_info:
            engine.apply(plan, progress=progress, cancel_event=cancel)

        result = exc_info.value.result
        assert [(o.name, o.status) for o in result.outcomes] == [
            ("a", OutcomeStatus.APPLIED),
            ("b", OutcomeStatus.CANCELED),
            ("c", OutcomeStatus.CANCELED),
        ]
        assert sandbox.names() == ["a"]
        assert set(State.load(engine.state_path).resources) == {"a"}

    def test_cancel_aborts_in_flight_operation(
        self, make_engine: Callable[..., StackEngine], sandbox: SandboxCloud
    ) -> None:
        engine = make_engine(max_workers=1)
        cancel = threading.Event()
        sandbox.stall("a")

        def progress(change: ResourceChange, event: str) -> None:
            if event == "start":
                cancel.set()

        b = BucketResource(name="b", bucket_name="shop-b", depends_on=["a"])
        plan = engine.plan([_bucket("a"), b])
        with pytest.raises(ApplyCanceled) as exc_info:
            engine.apply(plan, progress=progress, cancel_event=cancel)

        result = exc_info.value.result
        assert [(o.name, o.status) for o in result.outcomes] == [
            ("a", OutcomeStatus.CANCELED),
            ("b", OutcomeStatus.CANCELED),
        ]
        assert result.outcome("b").blocked_by == []
        assert sandbox.names() == []
        assert State.load_or_create(engine.state_path, "shop-test").resources == {}

    def test_cancel_waits_for_operation_that_cannot_be_aborted(
        self, tmp_path: Path, settings: StackSettings, sandbox: SandboxCloud
    ) -> None:
        registry = ResourceTypeRegistry()
        registry.register(BucketResource, NonAbortableHandler())
        engine = StackEngine(
            provider=CloudProvider.from_client(sandbox),
            settings=settings,
            state_path=tmp_path / "state.json",
            registry=registry,
            options=ApplyOptions(max_workers=1, poll_interval_seconds=0),
        )
        sandbox.completion_polls = 3
        cancel = threading.Event()

        def progress(change: ResourceChange, event: str) -> None:
            if event == "start":
                cancel.set()

        plan = engine.plan([_bucket("a"), _bucket("b")])
        with pytest.raises(ApplyCanceled) as exc_info:
            engine.apply(plan, progress=progress, cancel_event=cancel)

        result = exc_info.value.result
        assert [(o.name, o.status) for o in result.outcomes] == [
            ("a", OutcomeStatus.APPLIED),
            ("b", OutcomeStatus.CANCELED),
        ]
        assert sandbox.names() == ["a"]
        assert set(State.load(engine.state_path).resources) == {"a"}


class TestBarrier:
    def test_deletes_run_after_failed_create(
        self, make_engine: Callable[..., StackEngine], sandbox: SandboxCloud
    ) -> None:
        engine = make_engine()
        engine.apply(engine.plan([_bucket("old")]))

        sandbox.fail_next("new", "create", "bucket name taken")
        plan = engine.plan([_bucket("new")])
        assert plan.operations() == ["create new", "delete old"]

        with pytest.raises(ApplyError) as exc_info:
            engine.apply(plan)

        result = exc_info.value.result
        assert result.outcome("new").error == "create new failed: bucket name taken"
        assert result.outcome("old").status == OutcomeStatus.APPLIED
        assert sandbox.names() == []
        assert State.load(engine.state_path).resources == {}
