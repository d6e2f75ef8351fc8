"""Subnet allocation.

A network's base block is partitioned into equally sized, disjoint ranges:
one per subnet tier per availability zone, allocated tier-major so that all
zones of a tier are contiguous.
"""

from __future__ import annotations

import ipaddress
import itertools
import logging
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from stack_provisioner.engine.errors import AddressSpaceExhausted

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Smallest subnet most providers accept.
MAX_PREFIX = 28


@dataclass(frozen=True, slots=True)
class SubnetAllocation:
    tier: str
    zone: str
    cidr: str


def zone_names(region: str, count: int) -> list[str]:
    """Availability zone names for *region* (``us-east-1a``, ``us-east-1b``, ...)."""
    if count > len(string.ascii_lowercase):
        raise ValueError(f"Too many zones: {count}")
    return [f"{region}{letter}" for letter in string.ascii_lowercase[:count]]


def allocate_subnets(
    cidr: str,
    zones: Sequence[str],
    tiers: Sequence[str],
    *,
    subnet_prefix: int | None = None,
) -> list[SubnetAllocation]:
    """Partition *cidr* into one range per ``(tier, zone)``.

    Without *subnet_prefix* the largest equal split that fits every range is
    used. Raises ``AddressSpaceExhausted`` when the ranges do not fit.
    """
    base = ipaddress.ip_network(cidr, strict=True)
    count = len(zones) * len(tiers)
    if count == 0:
        return []

    if subnet_prefix is None:
        prefix = base.prefixlen + (count - 1).bit_length()
    else:
        prefix = subnet_prefix
        if prefix < base.prefixlen:
            raise AddressSpaceExhausted(
                cidr, f"subnet prefix /{prefix} is larger than the base block"
            )

    if prefix > MAX_PREFIX:
        raise AddressSpaceExhausted(
            cidr,
            f"{len(tiers)} tier(s) x {len(zones)} zone(s) need /{prefix} subnets "
            f"(smallest allowed is /{MAX_PREFIX})",
        )

    available = 2 ** (prefix - base.prefixlen)
    if count > available:
        raise AddressSpaceExhausted(
            cidr,
            f"{len(tiers)} tier(s) x {len(zones)} zone(s) need {count} /{prefix} subnets, "
            f"only {available} available",
        )

    blocks = itertools.islice(base.subnets(new_prefix=prefix), count)
    pairs = [(tier, zone) for tier in tiers for zone in zones]
    allocations = [
        SubnetAllocation(tier=tier, zone=zone, cidr=str(block))
        for (tier, zone), block in zip(pairs, blocks, strict=True)
    ]
    logger.debug("Allocated %d /%d subnets in %s", count, prefix, cidr)
    return allocations


def subnets_by_tier(allocations: Sequence[SubnetAllocation]) -> dict[str, list[dict[str, Any]]]:
    """Group allocations into the ``subnets`` attribute layout."""
    grouped: dict[str, list[dict[str, Any]]] = {}
    for a in allocations:
        grouped.setdefault(a.tier, []).append({"zone": a.zone, "cidr": a.cidr})
    return grouped
