"""Stack resource definitions."""

from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.compute import (
    FunctionResource,
    InstanceResource,
    RegistryResource,
    ServiceResource,
)
from stack_provisioner.resources.data import (
    BucketResource,
    CorsRule,
    DatabaseResource,
    SecretResource,
)
from stack_provisioner.resources.edge import (
    ApiGatewayResource,
    ApiRoute,
    CertificateResource,
    DistributionResource,
    DnsRecord,
    HostedZoneResource,
    Origin,
    TrailResource,
    WebAclResource,
)
from stack_provisioner.resources.network import (
    NetworkAttachedResource,
    NetworkResource,
    Reachability,
)
from stack_provisioner.resources.references import Reference, ref

__all__ = [
    "ApiGatewayResource",
    "ApiRoute",
    "BucketResource",
    "CertificateResource",
    "CorsRule",
    "DatabaseResource",
    "DistributionResource",
    "DnsRecord",
    "FunctionResource",
    "HostedZoneResource",
    "InstanceResource",
    "NetworkAttachedResource",
    "NetworkResource",
    "Origin",
    "Reachability",
    "Reference",
    "RegistryResource",
    "Resource",
    "SecretResource",
    "ServiceResource",
    "TrailResource",
    "WebAclResource",
    "ref",
]
