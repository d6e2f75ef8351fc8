"""Security rules derived from reachability declarations.

A resource declares ``reaches: [{target: db}]``; the rule is attached to the
*target* as ingress from the source. Declaration is asymmetric (ingress on
the target only) but every rule must have an outbound-capable source.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from stack_provisioner.resources.network import NetworkAttachedResource, NetworkResource
from stack_provisioner.resources.references import parse_token

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stack_provisioner.resources.base import Resource


class SecurityRule(BaseModel):
    """Ingress on ``target`` from ``source``."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    protocol: Literal["tcp", "udp"] = "tcp"
    from_port: int
    to_port: int

    @property
    def port_range(self) -> str:
        if self.from_port == self.to_port:
            return str(self.from_port)
        return f"{self.from_port}-{self.to_port}"

    def sort_key(self) -> tuple[str, str, int, int]:
        return (self.source, self.protocol, self.from_port, self.to_port)


def derive_security_rules(
    resources: Sequence[Resource],
) -> tuple[dict[str, list[SecurityRule]], list[str]]:
    """Derive ingress rules per target from every ``reaches`` declaration.

    Returns ``(rules_by_target, errors)``. Targets without rules are absent.
    """
    by_name = {r.name: r for r in resources}
    rules: dict[str, set[SecurityRule]] = {}
    errors: list[str] = []

    for source in sorted(resources, key=lambda r: r.name):
        if not isinstance(source, NetworkAttachedResource):
            continue
        for reach in source.reaches:
            where = f"'{source.name}' reaches '{reach.target}'"
            target = by_name.get(reach.target)
            if target is None:
                errors.append(f"{where}: unknown resource")
                continue
            if target.name == source.name:
                errors.append(f"{where}: a resource cannot reach itself")
                continue
            if not target.accepts_ingress:
                errors.append(f"{where}: {target.resource_type} resources accept no ingress")
                continue
            if not source.allow_outbound:
                errors.append(f"{where}: outbound traffic is disabled on the source")
                continue

            port = reach.port
            if port is None and target.ingress_port_field is not None:
                port = getattr(target, target.ingress_port_field)
            if not isinstance(port, int):
                errors.append(f"{where}: no port declared and the target has no default port")
                continue

            rule = SecurityRule(
                source=source.name,
                target=target.name,
                protocol=reach.protocol,
                from_port=port,
                to_port=reach.to_port or port,
            )
            rules.setdefault(target.name, set()).add(rule)

    ordered = {t: sorted(rs, key=SecurityRule.sort_key) for t, rs in sorted(rules.items())}
    return ordered, errors


def validate_placement(resources: Sequence[Resource]) -> list[str]:
    """Check network-attached resources against the network they reference."""
    by_name = {r.name: r for r in resources}
    errors: list[str] = []
    for r in sorted(resources, key=lambda r: r.name):
        if not isinstance(r, NetworkAttachedResource):
            continue
        token = parse_token(r.network)
        if token is None:
            # Literal id of a network managed elsewhere.
            continue
        network = by_name.get(token.resource_id)
        if not isinstance(network, NetworkResource):
            continue
        if token.attribute != "network_id":
            errors.append(
                f"'{r.name}' network must reference '{network.name}.network_id', "
                f"got '{token.attribute}'"
            )
        if r.subnet_tier not in network.tiers:
            errors.append(
                f"'{r.name}' is placed in tier '{r.subnet_tier}' "
                f"which network '{network.name}' does not define"
            )
    return errors
