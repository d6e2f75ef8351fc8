"""Tests for functions and the REST API gateway in front of them."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from stack_provisioner.core import SandboxCloud
from stack_provisioner.engine.errors import ValidationError as EngineValidationError
from stack_provisioner.engine.types import DriverPhase
from stack_provisioner.resources import (
    ApiGatewayResource,
    ApiRoute,
    DatabaseResource,
    FunctionResource,
    InstanceResource,
    NetworkResource,
    Reachability,
    SecretResource,
    ref,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from stack_provisioner.engine import StackEngine
    from stack_provisioner.resources.base import Resource


def _function(**overrides: object) -> FunctionResource:
    fields: dict[str, object] = {
        "name": "fn",
        "network": ref("vpc", "network_id"),
        "image": "repo/api:fn-latest",
    }
    fields.update(overrides)
    return FunctionResource(**fields)  # type: ignore[arg-type]


def _gateway(**overrides: object) -> ApiGatewayResource:
    fields: dict[str, object] = {
        "name": "gw",
        "function": ref("fn", "function_arn"),
        "routes": [
            ApiRoute(path="/api/v1/article", methods=["GET", "POST"], api_key_required=True),
            ApiRoute(path="/api/v1/article/{id}", methods=["GET"]),
        ],
    }
    fields.update(overrides)
    return ApiGatewayResource(**fields)  # type: ignore[arg-type]


def _stack() -> list[Resource]:
    return [
        NetworkResource(name="vpc"),
        SecretResource(name="creds", secret_name="${project}-db-credentials"),
        DatabaseResource(
            name="db",
            network=ref("vpc", "network_id"),
            database_name="app",
            credentials_secret=ref("creds", "arn"),
        ),
        _function(
            function_name="${project}-api-fn",
            environment={"DB_HOST": ref("db", "endpoint")},
            secrets={"DB_PASSWORD": ref("creds", "arn")},
            reaches=[Reachability(target="db")],
        ),
        _gateway(),
    ]


class TestFunctionValidation:
    def test_defaults(self) -> None:
        fn = _function()
        assert fn.subnet_tier == "private"
        assert fn.memory_mib == 512
        assert fn.timeout_seconds == 30
        assert fn.architecture == "arm64"

    def test_public_tier_rejected(self) -> None:
        with pytest.raises(ValidationError, match="'public' tier"):
            _function(subnet_tier="public")

    def test_variable_in_environment_and_secrets(self) -> None:
        with pytest.raises(ValidationError, match="both in 'environment' and 'secrets'"):
            _function(environment={"DB_PASSWORD": "x"}, secrets={"DB_PASSWORD": "arn"})

    @pytest.mark.parametrize("timeout", [0, 901])
    def test_timeout_bounds(self, timeout: int) -> None:
        with pytest.raises(ValidationError):
            _function(timeout_seconds=timeout)

    def test_generated_outputs_are_referenceable(self) -> None:
        names = FunctionResource.attribute_names()
        assert {"function_arn", "security_group_id", "role_arn", "function_name"} <= names
        assert "ingress" not in names


class TestGatewayValidation:
    def test_duplicate_route_rejected(self) -> None:
        routes = [
            ApiRoute(path="/api/v1/category", methods=["GET"]),
            ApiRoute(path="/api/v1/category", methods=["POST", "GET"]),
        ]
        with pytest.raises(ValidationError, match="duplicate route GET /api/v1/category"):
            _gateway(routes=routes)

    def test_same_path_different_methods(self) -> None:
        routes = [
            ApiRoute(path="/api/v1/category", methods=["GET"]),
            ApiRoute(path="/api/v1/category", methods=["POST"], api_key_required=True),
        ]
        assert len(_gateway(routes=routes).routes) == 2

    @pytest.mark.parametrize("path", ["api/v1", "/api v1", ""])
    def test_invalid_paths(self, path: str) -> None:
        with pytest.raises(ValidationError):
            ApiRoute(path=path, methods=["GET"])

    def test_routes_required(self) -> None:
        with pytest.raises(ValidationError):
            _gateway(routes=[])

    def test_usage_plan_defaults(self) -> None:
        gw = _gateway()
        assert (gw.rate_limit, gw.burst_limit) == (1000, 500)
        assert (gw.quota_limit, gw.quota_period) == (10000, "DAY")
        assert gw.stage == "prod"


class TestSandboxValues:
    def test_function_values(self) -> None:
        cloud = SandboxCloud(region="eu-west-1", account="123456789012")
        cloud.poll(cloud.submit("create", "function", "fn", {"function_name": "shop-fn"}))
        attrs = cloud.describe("fn")
        assert attrs is not None
        assert attrs["function_arn"] == "arn:aws:lambda:eu-west-1:123456789012:function:shop-fn"
        assert attrs["role_arn"] == "arn:aws:iam::123456789012:role/shop-fn-role"
        assert attrs["security_group_id"].startswith("sg-")
        assert attrs["function_name"] == "shop-fn"

    def test_gateway_values(self) -> None:
        cloud = SandboxCloud(region="eu-west-1", account="123456789012")
        cloud.poll(cloud.submit("create", "api_gateway", "gw", {"stage": "v1"}))
        attrs = cloud.describe("gw")
        assert attrs is not None
        api_id = attrs["api_id"]
        assert attrs["arn"] == f"arn:aws:apigateway:eu-west-1::/restapis/{api_id}"
        assert attrs["endpoint"] == f"https://{api_id}.execute-api.eu-west-1.amazonaws.com/v1"
        assert attrs["api_key_id"]


class TestServerlessStack:
    def test_run_wires_function_into_database_and_gateway(
        self, make_engine: Callable[..., StackEngine], sandbox: SandboxCloud
    ) -> None:
        engine = make_engine(max_workers=4)
        report = engine.run(_stack())

        assert report.phase == DriverPhase.SETTLED
        assert report.plan is not None
        assert report.plan.operations() == [
            "create creds",
            "create vpc",
            "create db",
            "create fn",
            "create gw",
        ]

        db = sandbox.describe("db")
        fn = sandbox.describe("fn")
        gw = sandbox.describe("gw")
        assert db is not None
        assert fn is not None
        assert gw is not None
        assert db["ingress"] == [
            {"source": "fn", "target": "db", "protocol": "tcp", "from_port": 5432, "to_port": 5432}
        ]
        assert fn["environment"] == {"DB_HOST": db["endpoint"]}
        assert fn["function_arn"].endswith(":function:shop-api-fn")
        assert gw["function"] == fn["function_arn"]

        assert report.outputs["gw.endpoint"] == gw["endpoint"]
        assert report.outputs["fn.function_arn"] == fn["function_arn"]

    def test_function_accepts_no_ingress(
        self, make_engine: Callable[..., StackEngine]
    ) -> None:
        resources = [
            NetworkResource(name="vpc"),
            _function(),
            InstanceResource(
                name="bastion",
                network=ref("vpc", "network_id"),
                reaches=[Reachability(target="fn", port=8080)],
            ),
        ]
        with pytest.raises(EngineValidationError) as exc_info:
            make_engine().plan(resources)
        assert exc_info.value.errors == [
            "'bastion' reaches 'fn': function resources accept no ingress"
        ]

    def test_gateway_needs_known_function_attribute(
        self, make_engine: Callable[..., StackEngine]
    ) -> None:
        resources = [
            NetworkResource(name="vpc"),
            _function(),
            _gateway(function=ref("fn", "invoke_url")),
        ]
        with pytest.raises(EngineValidationError) as exc_info:
            make_engine().plan(resources)
        assert exc_info.value.errors == [
            "Resource 'gw' references unknown attribute 'invoke_url' of function 'fn'"
        ]
