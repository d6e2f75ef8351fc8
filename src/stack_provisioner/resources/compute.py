"""Compute resource models: hosts, container services, functions and image registries."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import Field, model_validator

from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.markers import Compare
from stack_provisioner.resources.network import NetworkAttachedResource, SubnetTier


class InstanceResource(NetworkAttachedResource):
    """A single virtual machine, e.g. a bastion host in the public tier."""

    resource_type: ClassVar[str] = "instance"
    outputs: ClassVar[frozenset[str]] = frozenset(
        {"instance_id", "private_ip", "public_ip", "security_group_id"}
    )
    accepts_ingress: ClassVar[bool] = True
    ingress_port_field: ClassVar[str | None] = "ssh_port"

    subnet_tier: SubnetTier = "public"
    instance_type: str = "t3.micro"
    image: str = "amazon-linux-2023"
    instance_name: str | None = None
    ssh_port: int = Field(default=22, ge=1, le=65535)


class ServiceResource(NetworkAttachedResource):
    """A load-balanced container service (one task definition, one container)."""

    resource_type: ClassVar[str] = "service"
    outputs: ClassVar[frozenset[str]] = frozenset(
        {
            "service_arn",
            "cluster_arn",
            "load_balancer_arn",
            "load_balancer_dns",
            "security_group_id",
            "task_role_arn",
            "url",
        }
    )
    accepts_ingress: ClassVar[bool] = True
    ingress_port_field: ClassVar[str | None] = "container_port"

    image: str = Field(min_length=1)
    cpu: Literal[256, 512, 1024, 2048, 4096] = 256
    memory_mib: int = 512
    desired_count: int = Field(default=1, ge=0)
    container_port: int = Field(default=80, ge=1, le=65535)
    environment: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)
    secrets: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)
    certificate: str | None = None
    domain_name: str | None = None
    health_check_path: str = "/"
    public_load_balancer: bool = True
    log_retention_days: int = Field(default=30, ge=1)

    @model_validator(mode="after")
    def _check_task_size(self) -> Self:
        if not self.cpu * 2 <= self.memory_mib <= self.cpu * 8:
            raise ValueError(
                f"memory_mib {self.memory_mib} is not valid for cpu {self.cpu} "
                f"(expected {self.cpu * 2}-{self.cpu * 8})"
            )
        if set(self.environment) & set(self.secrets):
            raise ValueError("a variable cannot be both in 'environment' and 'secrets'")
        return self


class RegistryResource(Resource):
    """A container image repository."""

    resource_type: ClassVar[str] = "registry"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn", "uri"})

    repository_name: str = Field(min_length=1)
    image_scan_on_push: bool = True
    image_tag_mutability: Literal["MUTABLE", "IMMUTABLE"] = "MUTABLE"


class FunctionResource(NetworkAttachedResource):
    """A container-image function running inside the network.

    Functions open connections but never accept them, so they may appear as
    the source of a ``reaches`` entry but not as its target.
    """

    resource_type: ClassVar[str] = "function"
    outputs: ClassVar[frozenset[str]] = frozenset(
        {"function_arn", "security_group_id", "role_arn"}
    )
    derived_attributes: ClassVar[frozenset[str]] = frozenset()

    image: str = Field(min_length=1)
    function_name: str | None = None
    memory_mib: int = Field(default=512, ge=128, le=10240)
    timeout_seconds: int = Field(default=30, ge=1, le=900)
    architecture: Literal["x86_64", "arm64"] = "arm64"
    environment: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)
    secrets: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_function(self) -> Self:
        if self.subnet_tier == "public":
            raise ValueError("functions cannot be placed in the 'public' tier")
        if set(self.environment) & set(self.secrets):
            raise ValueError("a variable cannot be both in 'environment' and 'secrets'")
        return self
