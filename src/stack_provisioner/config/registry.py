"""Default resource type registry factory."""

from __future__ import annotations

from stack_provisioner.engine.cloud_handler import CloudResourceHandler
from stack_provisioner.engine.registry import ResourceTypeRegistry
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


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types.

    Every type is served by one ``CloudResourceHandler``.
    """
    registry = ResourceTypeRegistry()
    registry.register_all(
        [
            NetworkResource,
            SecretResource,
            RegistryResource,
            DatabaseResource,
            InstanceResource,
            ServiceResource,
            FunctionResource,
            BucketResource,
            CertificateResource,
            HostedZoneResource,
            WebAclResource,
            DistributionResource,
            ApiGatewayResource,
            TrailResource,
        ],
        CloudResourceHandler(),
    )
    return registry
