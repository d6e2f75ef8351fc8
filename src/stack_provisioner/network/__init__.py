"""Network topology assembly: subnet allocation and derived security rules."""

from stack_provisioner.network.addressing import SubnetAllocation, allocate_subnets, zone_names
from stack_provisioner.network.rules import SecurityRule, derive_security_rules, validate_placement

__all__ = [
    "SecurityRule",
    "SubnetAllocation",
    "allocate_subnets",
    "derive_security_rules",
    "validate_placement",
    "zone_names",
]
