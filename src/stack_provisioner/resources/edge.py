"""Edge and audit resource models: DNS, certificates, firewall, CDN, APIs and trails."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.markers import Compare

DEFAULT_MANAGED_RULE_GROUPS = [
    "AWSManagedRulesAmazonIpReputationList",
    "AWSManagedRulesCommonRuleSet",
    "AWSManagedRulesLinuxRuleSet",
]


class CertificateResource(Resource):
    """An existing TLS certificate imported by ARN."""

    resource_type: ClassVar[str] = "certificate"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn"})

    certificate_arn: str = Field(min_length=1)
    domain_name: str = Field(min_length=1)


class DnsRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    type: Literal["A", "AAAA", "CNAME", "ALIAS", "TXT"] = "CNAME"
    value: str = Field(min_length=1)
    ttl: int = Field(default=300, ge=0)


class HostedZoneResource(Resource):
    """An existing DNS zone, optionally managing a set of records in it."""

    resource_type: ClassVar[str] = "hosted_zone"
    outputs: ClassVar[frozenset[str]] = frozenset({"name_servers"})

    zone_id: str = Field(min_length=1)
    zone_name: str = Field(min_length=1)
    records: list[DnsRecord] = Field(default_factory=list)


class WebAclResource(Resource):
    """A web application firewall ACL associated with load balancers or CDNs."""

    resource_type: ClassVar[str] = "web_acl"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn", "acl_id"})

    scope: Literal["REGIONAL", "CLOUDFRONT"] = "REGIONAL"
    managed_rule_groups: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MANAGED_RULE_GROUPS)
    )
    rate_limit: int | None = Field(default=None, ge=100)
    allowed_ip_ranges: Annotated[list[str], Compare("set")] = Field(default_factory=list)
    associations: Annotated[list[str], Compare("set")] = Field(default_factory=list)
    log_retention_days: int = Field(default=30, ge=1)


class Origin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    domain_name: str = Field(min_length=1)
    path_pattern: str | None = None
    protocol: Literal["https-only", "http-only", "match-viewer"] = "https-only"
    caching: bool = True


class DistributionResource(Resource):
    """A CDN distribution fronting one or more origins."""

    resource_type: ClassVar[str] = "distribution"
    outputs: ClassVar[frozenset[str]] = frozenset({"distribution_id", "domain_name", "arn"})

    origins: list[Origin] = Field(min_length=1)
    default_origin: str
    default_root_object: str = "index.html"
    certificate: str | None = None
    aliases: Annotated[list[str], Compare("set")] = Field(default_factory=list)
    web_acl: str | None = None
    log_bucket: str | None = None
    price_class: Literal["PriceClass_100", "PriceClass_200", "PriceClass_All"] = "PriceClass_100"
    spa_fallback: bool = True

    @model_validator(mode="after")
    def _check_origins(self) -> Self:
        ids = [o.id for o in self.origins]
        if len(set(ids)) != len(ids):
            raise ValueError("origin ids must be unique")
        if self.default_origin not in ids:
            raise ValueError(f"default_origin '{self.default_origin}' is not a declared origin")
        if self.aliases and self.certificate is None:
            raise ValueError("'aliases' require a 'certificate'")
        return self


class TrailResource(Resource):
    """An audit trail delivering API activity logs to a bucket."""

    resource_type: ClassVar[str] = "trail"
    outputs: ClassVar[frozenset[str]] = frozenset({"arn"})

    bucket: str = Field(min_length=1)
    log_retention_days: int | None = Field(default=None, ge=1)
    include_global_events: bool = True
    multi_region: bool = True
    file_validation: bool = True


class ApiRoute(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(pattern=r"^/[A-Za-z0-9_{}/.-]*$")
    methods: list[Literal["GET", "POST", "PUT", "PATCH", "DELETE"]] = Field(min_length=1)
    api_key_required: bool = False


class ApiGatewayResource(Resource):
    """A REST API proxying every route to one function, with a usage plan.

    Requests are throttled to ``rate_limit`` per second (bursts up to
    ``burst_limit``); ``quota_limit`` caps requests per ``quota_period``.
    Routes with ``api_key_required`` only accept the generated API key.
    """

    resource_type: ClassVar[str] = "api_gateway"
    outputs: ClassVar[frozenset[str]] = frozenset({"api_id", "arn", "endpoint", "api_key_id"})

    function: str = Field(min_length=1)
    api_name: str | None = None
    stage: str = Field(default="prod", pattern=r"^[A-Za-z0-9_]+$")
    routes: list[ApiRoute] = Field(min_length=1)
    cors_origins: Annotated[list[str], Compare("set")] = Field(default_factory=list)
    rate_limit: int = Field(default=1000, ge=1)
    burst_limit: int = Field(default=500, ge=0)
    quota_limit: int | None = Field(default=10000, ge=1)
    quota_period: Literal["DAY", "WEEK", "MONTH"] = "DAY"
    logging_level: Literal["OFF", "ERROR", "INFO"] = "INFO"

    @model_validator(mode="after")
    def _check_routes(self) -> Self:
        seen: set[tuple[str, str]] = set()
        for route in self.routes:
            for method in route.methods:
                if (route.path, method) in seen:
                    raise ValueError(f"duplicate route {method} {route.path}")
                seen.add((route.path, method))
        return self
