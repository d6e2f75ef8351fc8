"""Network resource models: the address space and network-attached resources."""

from __future__ import annotations

import ipaddress
from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.markers import Static

SubnetTier = Literal["public", "private", "isolated"]


class NetworkResource(Resource):
    """A virtual network split into subnet tiers across availability zones.

    - ``public``: routed to an internet gateway
    - ``private``: egress through NAT gateways only
    - ``isolated``: no route to the internet
    """

    resource_type: ClassVar[str] = "network"
    outputs: ClassVar[frozenset[str]] = frozenset({"network_id", "availability_zones"})
    derived_attributes: ClassVar[frozenset[str]] = frozenset({"subnets"})

    cidr: Annotated[str, Static()] = "10.0.0.0/16"
    zones: Annotated[int, Static()] = Field(default=2, ge=1, le=6)
    nat_gateways: int = Field(default=1, ge=0)
    tiers: Annotated[list[SubnetTier], Static()] = Field(
        default_factory=lambda: ["public", "private", "isolated"], min_length=1
    )
    subnet_prefix: Annotated[int | None, Static()] = Field(default=None, ge=16, le=28)

    @field_validator("cidr")
    @classmethod
    def _check_cidr(cls, v: str) -> str:
        try:
            net = ipaddress.ip_network(v, strict=True)
        except ValueError as exc:
            raise ValueError(f"invalid CIDR block {v!r}: {exc}") from exc
        if net.version != 4:
            raise ValueError("only IPv4 CIDR blocks are supported")
        return v

    @field_validator("tiers")
    @classmethod
    def _unique_tiers(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("subnet tiers must be unique")
        return v

    @model_validator(mode="after")
    def _check_nat(self) -> Self:
        if self.nat_gateways > self.zones:
            raise ValueError("nat_gateways cannot exceed the number of zones")
        if self.nat_gateways and "public" not in self.tiers:
            raise ValueError("NAT gateways require a 'public' subnet tier")
        return self


class Reachability(BaseModel):
    """Declares that a resource must reach ``target`` over the network."""

    model_config = ConfigDict(extra="forbid")

    target: str = Field(min_length=1)
    port: int | None = Field(default=None, ge=1, le=65535)
    to_port: int | None = Field(default=None, ge=1, le=65535)
    protocol: Literal["tcp", "udp"] = "tcp"

    @model_validator(mode="after")
    def _check_range(self) -> Self:
        if self.to_port is not None and (self.port is None or self.to_port < self.port):
            raise ValueError("'to_port' requires 'port' and must not be lower than it")
        return self


class NetworkAttachedResource(Resource):
    """Base for resources placed in a network subnet tier."""

    network_attached: ClassVar[bool] = True
    derived_attributes: ClassVar[frozenset[str]] = frozenset({"ingress"})

    network: str = Field(min_length=1)
    subnet_tier: SubnetTier = "private"
    reaches: Annotated[list[Reachability], Static()] = Field(default_factory=list)
    allow_outbound: bool = True
