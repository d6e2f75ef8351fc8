"""Data resource models: databases, secrets and object storage."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.markers import Compare
from stack_provisioner.resources.network import NetworkAttachedResource, SubnetTier


class SecretResource(Resource):
    """A generated credential (JSON document with one generated key)."""

    resource_type: ClassVar[str] = "secret"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn"})

    secret_name: str = Field(min_length=1)
    template: dict[str, Any] = Field(default_factory=dict)
    generate_key: str = "password"
    length: int = Field(default=32, ge=8, le=4096)
    exclude_punctuation: bool = True

    @model_validator(mode="after")
    def _check_key(self) -> Self:
        if self.generate_key in self.template:
            raise ValueError(f"'{self.generate_key}' is generated and cannot be in the template")
        return self


class DatabaseResource(NetworkAttachedResource):
    """A managed PostgreSQL-compatible cluster with a single writer."""

    resource_type: ClassVar[str] = "database"
    outputs: ClassVar[frozenset[str]] = frozenset(
        {"arn", "endpoint", "reader_endpoint", "security_group_id", "identifier"}
    )
    accepts_ingress: ClassVar[bool] = True
    ingress_port_field: ClassVar[str | None] = "port"

    subnet_tier: SubnetTier = "isolated"
    engine: Literal["aurora-postgresql"] = "aurora-postgresql"
    engine_version: str = "15.3"
    port: int = Field(default=5432, ge=1, le=65535)
    database_name: str = Field(min_length=1)
    credentials_secret: str = Field(min_length=1)
    min_capacity: float = Field(default=0.5, ge=0.5, le=128)
    max_capacity: float = Field(default=2, ge=1, le=128)
    backup_retention_days: int = Field(default=10, ge=1, le=35)
    preferred_backup_window: str = Field(
        default="07:00-09:00", pattern=r"^\d{2}:\d{2}-\d{2}:\d{2}$"
    )
    storage_encrypted: bool = True
    deletion_protection: bool = False
    publicly_accessible: bool = False

    @model_validator(mode="after")
    def _check_capacity(self) -> Self:
        if self.min_capacity > self.max_capacity:
            raise ValueError("min_capacity cannot exceed max_capacity")
        if self.publicly_accessible and self.subnet_tier == "isolated":
            raise ValueError("a publicly accessible database cannot live in the isolated tier")
        return self


class CorsRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allowed_methods: list[Literal["GET", "PUT", "POST", "DELETE", "HEAD"]] = Field(min_length=1)
    allowed_origins: list[str] = Field(min_length=1)
    allowed_headers: list[str] = Field(default_factory=list)
    exposed_headers: list[str] = Field(default_factory=list)


class BucketResource(Resource):
    """An object storage bucket."""

    resource_type: ClassVar[str] = "bucket"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn", "domain_name"})

    bucket_name: str = Field(pattern=r"^[a-z0-9${}._-]{3,}$")
    versioned: bool = False
    encryption: Literal["s3-managed", "kms"] = "s3-managed"
    block_public_access: bool = True
    enforce_ssl: bool = True
    access_logs_prefix: str | None = None
    cors: list[CorsRule] = Field(default_factory=list)
    grant_read_write: Annotated[list[str], Compare("set")] = Field(default_factory=list)
