"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stack_provisioner.engine.types import ApplyOptions
from stack_provisioner.resources.base import Resource  # noqa: TC001
from stack_provisioner.resources.compute import (
    FunctionResource,
    InstanceResource,
    RegistryResource,
    ServiceResource,
)
from stack_provisioner.resources.data import BucketResource, DatabaseResource, SecretResource
from stack_provisioner.resources.edge import (
    ApiGatewayResource,
    CertificateResource,
    DistributionResource,
    HostedZoneResource,
    TrailResource,
    WebAclResource,
)
from stack_provisioner.resources.network import NetworkResource


class StackSettings(BaseSettings):
    """Stack-wide settings shared by every resource.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``STACK_`` prefix. Constructor kwargs take precedence. Settings
    are immutable once loaded.
    """

    model_config = SettingsConfigDict(env_prefix="STACK_", frozen=True, extra="ignore")

    project: str = Field(pattern=r"^[a-z][a-z0-9-]*$")
    environment: str = Field(default="dev", pattern=r"^[a-z][a-z0-9-]*$")
    region: str = "us-east-1"
    account: str = Field(default="000000000000", pattern=r"^\d{12}$")

    @property
    def stack_name(self) -> str:
        return f"{self.project}-{self.environment}"


class ProviderConfig(BaseModel):
    """Where the sandbox cloud keeps its records.

    ``completion_polls`` is how many status polls an operation takes to
    finish; values above zero make every mutation asynchronous.
    """

    model_config = ConfigDict(extra="forbid")

    sandbox_path: Path | None = Path(".stack-cloud.json")
    completion_polls: int = Field(default=1, ge=0)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class Config(BaseModel):
    """Provisioning configuration, validated directly from the YAML structure."""

    model_config = ConfigDict(extra="forbid")

    settings: StackSettings
    provider: Annotated[ProviderConfig, BeforeValidator(_none_to_dict)] = ProviderConfig()
    state_path: Path = Path(".stack-state.json")
    apply: Annotated[ApplyOptions, BeforeValidator(_none_to_dict)] = ApplyOptions()
    networks: Annotated[list[NetworkResource], BeforeValidator(_none_to_list)] = []
    secrets: Annotated[list[SecretResource], BeforeValidator(_none_to_list)] = []
    registries: Annotated[list[RegistryResource], BeforeValidator(_none_to_list)] = []
    databases: Annotated[list[DatabaseResource], BeforeValidator(_none_to_list)] = []
    instances: Annotated[list[InstanceResource], BeforeValidator(_none_to_list)] = []
    services: Annotated[list[ServiceResource], BeforeValidator(_none_to_list)] = []
    functions: Annotated[list[FunctionResource], BeforeValidator(_none_to_list)] = []
    buckets: Annotated[list[BucketResource], BeforeValidator(_none_to_list)] = []
    certificates: Annotated[list[CertificateResource], BeforeValidator(_none_to_list)] = []
    hosted_zones: Annotated[list[HostedZoneResource], BeforeValidator(_none_to_list)] = []
    web_acls: Annotated[list[WebAclResource], BeforeValidator(_none_to_list)] = []
    distributions: Annotated[list[DistributionResource], BeforeValidator(_none_to_list)] = []
    api_gateways: Annotated[list[ApiGatewayResource], BeforeValidator(_none_to_list)] = []
    trails: Annotated[list[TrailResource], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources; ordering is not significant."""
        return [
            *self.networks,
            *self.secrets,
            *self.registries,
            *self.databases,
            *self.instances,
            *self.services,
            *self.functions,
            *self.buckets,
            *self.certificates,
            *self.hosted_zones,
            *self.web_acls,
            *self.distributions,
            *self.api_gateways,
            *self.trails,
        ]
