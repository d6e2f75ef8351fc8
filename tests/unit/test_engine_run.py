"""End-to-end runs of the engine against the sandbox cloud."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from stack_provisioner.core import SandboxCloud
from stack_provisioner.core.state import State
from stack_provisioner.engine import StackEngine
from stack_provisioner.engine.types import DriverPhase, OutcomeStatus
from stack_provisioner.resources import (
    BucketResource,
    DatabaseResource,
    NetworkResource,
    Reachability,
    SecretResource,
    ServiceResource,
    TrailResource,
    ref,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from stack_provisioner.resources.base import Resource


def _stack() -> list[Resource]:
    network = ref("vpc", "network_id")
    return [
        ServiceResource(
            name="api",
            network=network,
            image="api:1",
            environment={"DB_HOST": ref("db", "endpoint")},
            secrets={"DB_PASSWORD": ref("creds", "arn")},
            reaches=[Reachability(target="db")],
        ),
        DatabaseResource(
            name="db",
            network=network,
            database_name="app",
            credentials_secret=ref("creds", "arn"),
        ),
        NetworkResource(name="vpc"),
        SecretResource(name="creds", secret_name="${project}-db-credentials"),
        TrailResource(name="audit", bucket=ref("logs", "arn")),
        BucketResource(name="logs", bucket_name="${project}-logs"),
    ]


@pytest.fixture
def engine(make_engine: Callable[..., StackEngine]) -> StackEngine:
    return make_engine(max_workers=4)


def test_first_run_provisions_in_dependency_order(
    engine: StackEngine, sandbox: SandboxCloud
) -> None:
    report = engine.run(_stack())

    assert report.phase == DriverPhase.SETTLED
    assert report.plan is not None
    assert report.plan.operations() == [
        "create creds",
        "create logs",
        "create audit",
        "create vpc",
        "create db",
        "create api",
    ]
    assert report.drift == []
    assert sandbox.names() == ["api", "audit", "creds", "db", "logs", "vpc"]

    db = sandbox.describe("db")
    api = sandbox.describe("api")
    assert db is not None
    assert api is not None
    assert api["environment"] == {"DB_HOST": db["endpoint"]}
    assert api["secrets"] == {"DB_PASSWORD": sandbox.describe("creds")["arn"]}  # type: ignore[index]
    assert db["network"] == sandbox.describe("vpc")["network_id"]  # type: ignore[index]
    assert db["ingress"] == [
        {"source": "api", "target": "db", "protocol": "tcp", "from_port": 5432, "to_port": 5432}
    ]
    assert sandbox.describe("logs")["bucket_name"] == "shop-logs"  # type: ignore[index]

    assert report.outputs["db.endpoint"] == db["endpoint"]
    assert report.outputs["api.url"].startswith("http://api-")
    assert report.outputs["db.port"] == 5432
    assert report.outputs["db.ingress"] == db["ingress"]
    assert report.outputs["vpc.subnets"] == sandbox.describe("vpc")["subnets"]  # type: ignore[index]
    assert report.outputs["logs.bucket_name"] == "shop-logs"
    assert engine.outputs() == report.outputs


def test_second_run_makes_no_requests(engine: StackEngine, sandbox: SandboxCloud) -> None:
    engine.run(_stack())
    requests = len(sandbox.requests)
    serial = State.load(engine.state_path).serial

    report = engine.run(_stack())

    assert report.settled
    assert report.plan is not None
    assert not report.plan.has_changes()
    assert len(sandbox.requests) == requests
    assert State.load(engine.state_path).serial == serial


def test_out_of_band_change_is_reported_and_reverted(
    engine: StackEngine, sandbox: SandboxCloud
) -> None:
    engine.run(_stack())
    sandbox.modify("logs", versioned=True)

    (entry,) = engine.drift()
    assert entry.name == "logs"
    assert entry.diff == {"versioned": {"from": False, "to": True}}

    requests = len(sandbox.requests)
    report = engine.run(_stack())

    assert report.settled
    assert sandbox.requests[requests:] == [("update", "logs")]
    assert sandbox.describe("logs")["versioned"] is False  # type: ignore[index]
    assert report.result is not None
    audit = report.result.outcome("audit")
    assert audit is not None
    assert audit.status == OutcomeStatus.UNCHANGED


def test_removed_resource_is_recreated(engine: StackEngine, sandbox: SandboxCloud) -> None:
    engine.run(_stack())
    endpoint = sandbox.describe("db")["endpoint"]  # type: ignore[index]
    sandbox.remove("db")

    requests = len(sandbox.requests)
    report = engine.run(_stack())

    assert report.settled
    assert sandbox.requests[requests:] == [("create", "db")]
    assert sandbox.describe("db")["endpoint"] == endpoint  # type: ignore[index]


def test_cycle_fails_in_planning(engine: StackEngine, sandbox: SandboxCloud) -> None:
    resources = [
        BucketResource(name="x", bucket_name="shop-x", depends_on=["y"]),
        BucketResource(name="y", bucket_name="shop-y", depends_on=["x"]),
    ]
    report = engine.run(resources)

    assert report.phase == DriverPhase.FAILED
    assert report.failed_phase == DriverPhase.PLANNING
    assert report.error == "Dependency cycle detected: x -> y -> x"
    assert sandbox.requests == []


@pytest.mark.parametrize("attribute", ["arn", "selfAttr"])
def test_self_reference_fails_as_cycle(
    engine: StackEngine, sandbox: SandboxCloud, attribute: str
) -> None:
    resources = [BucketResource(name="C", bucket_name="shop-c", tags={"x": ref("C", attribute)})]
    report = engine.run(resources)

    assert report.phase == DriverPhase.FAILED
    assert report.failed_phase == DriverPhase.PLANNING
    assert report.error == "Dependency cycle detected: C -> C"
    assert sandbox.requests == []


def test_provider_failure_fails_in_executing(engine: StackEngine, sandbox: SandboxCloud) -> None:
    sandbox.fail_next("db", "create", "quota exceeded")
    report = engine.run(_stack())

    assert report.phase == DriverPhase.FAILED
    assert report.failed_phase == DriverPhase.EXECUTING
    assert report.error == "1 operation(s) failed: db"
    assert report.result is not None
    api = report.result.outcome("api")
    assert api is not None
    assert api.status == OutcomeStatus.BLOCKED
    assert api.blocked_by == ["db"]
    assert "db" not in sandbox.names()

    assert engine.run(_stack()).settled
    assert "db" in sandbox.names()


def test_destroy_runs_in_reverse_dependency_order(
    engine: StackEngine, sandbox: SandboxCloud
) -> None:
    engine.run(_stack())

    report = engine.run(_stack(), destroy=True)

    assert report.settled
    assert report.plan is not None
    assert report.plan.operations() == [
        "delete api",
        "delete db",
        "delete vpc",
        "delete audit",
        "delete logs",
        "delete creds",
    ]
    assert sandbox.names() == []
    assert report.outputs == {}
    assert State.load(engine.state_path).resources == {}
