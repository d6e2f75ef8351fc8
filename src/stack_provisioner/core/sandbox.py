"""A local stand-in for a cloud control plane.

``SandboxCloud`` accepts create/update/delete requests, completes them
asynchronously after a number of status polls and generates identifiers,
ARNs and endpoints the way a real provider would. Generated values are
derived from the account, region, type and name, so the same stack always
gets the same values.

Records can be persisted to a JSON file so separate CLI invocations see the
same "cloud".
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

OperationKind = Literal["create", "update", "delete"]


class SandboxError(Exception):
    """Raised for rejected requests (unknown operation, conflicting record)."""


class CloudRecord(BaseModel):
    resource_type: str
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    generated: dict[str, Any] = Field(default_factory=dict)

    @property
    def attributes(self) -> dict[str, Any]:
        return {**self.properties, **self.generated}


class CloudOperation(BaseModel):
    token: str
    kind: OperationKind
    resource_type: str
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    polls_remaining: int = 0
    state: Literal["pending", "succeeded", "failed", "canceled"] = "pending"
    error: str | None = None


class _Snapshot(BaseModel):
    records: dict[str, CloudRecord] = Field(default_factory=dict)
    operations: dict[str, CloudOperation] = Field(default_factory=dict)
    sequence: int = 0


def _digest(*parts: str) -> str:
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


Generator = Callable[["SandboxCloud", str, dict[str, Any]], dict[str, Any]]


def _network(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    zones = int(props.get("zones", 2))
    return {
        "network_id": "vpc-" + cloud.hex_id("network", name, 17),
        "availability_zones": [f"{cloud.region}{chr(ord('a') + i)}" for i in range(zones)],
    }


def _secret(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    secret_name = props.get("secret_name", name)
    suffix = cloud.hex_id("secret", name, 6)
    prefix = f"arn:aws:secretsmanager:{cloud.region}:{cloud.account}"
    return {"arn": f"{prefix}:secret:{secret_name}-{suffix}"}


def _registry(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    repo = props.get("repository_name", name)
    return {
        "arn": f"arn:aws:ecr:{cloud.region}:{cloud.account}:repository/{repo}",
        "uri": f"{cloud.account}.dkr.ecr.{cloud.region}.amazonaws.com/{repo}",
    }


def _database(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = props
    identifier = f"{name}-{cloud.hex_id('database', name, 8)}".lower()
    suffix = cloud.hex_id("database-endpoint", name, 12)
    host = f"{cloud.region}.rds.amazonaws.com"
    return {
        "identifier": identifier,
        "arn": f"arn:aws:rds:{cloud.region}:{cloud.account}:cluster:{identifier}",
        "endpoint": f"{identifier}.cluster-{suffix}.{host}",
        "reader_endpoint": f"{identifier}.cluster-ro-{suffix}.{host}",
        "security_group_id": "sg-" + cloud.hex_id("database-sg", name, 17),
    }


def _private_ip(cloud: SandboxCloud, name: str) -> str:
    raw = bytes.fromhex(cloud.hex_id("instance-ip", name, 6))
    return f"10.{raw[0]}.{raw[1]}.{max(raw[2] % 250, 4)}"


def _instance(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    generated = {
        "instance_id": "i-" + cloud.hex_id("instance", name, 17),
        "private_ip": _private_ip(cloud, name),
        "security_group_id": "sg-" + cloud.hex_id("instance-sg", name, 17),
    }
    if props.get("subnet_tier") == "public":
        raw = bytes.fromhex(cloud.hex_id("instance-public-ip", name, 6))
        generated["public_ip"] = f"54.{raw[0]}.{raw[1]}.{max(raw[2] % 250, 4)}"
    return generated


def _service(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    prefix = f"arn:aws:ecs:{cloud.region}:{cloud.account}"
    lb_dns = f"{name}-{cloud.hex_id('service-lb', name, 8)}.{cloud.region}.elb.amazonaws.com"
    domain = props.get("domain_name")
    if domain and props.get("certificate"):
        url = f"https://{domain}"
    else:
        url = f"http://{lb_dns}"
    return {
        "cluster_arn": f"{prefix}:cluster/{name}-cluster",
        "service_arn": f"{prefix}:service/{name}-cluster/{name}",
        "load_balancer_arn": (
            f"arn:aws:elasticloadbalancing:{cloud.region}:{cloud.account}:"
            f"loadbalancer/app/{name}/{cloud.hex_id('service-lb', name, 16)}"
        ),
        "load_balancer_dns": lb_dns,
        "security_group_id": "sg-" + cloud.hex_id("service-sg", name, 17),
        "task_role_arn": f"arn:aws:iam::{cloud.account}:role/{name}-task-role",
        "url": url,
    }


def _function(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    function_name = props.get("function_name") or name
    return {
        "function_arn": f"arn:aws:lambda:{cloud.region}:{cloud.account}:function:{function_name}",
        "security_group_id": "sg-" + cloud.hex_id("function-sg", name, 17),
        "role_arn": f"arn:aws:iam::{cloud.account}:role/{function_name}-role",
    }


def _bucket(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    bucket = props.get("bucket_name", name)
    return {
        "arn": f"arn:aws:s3:::{bucket}",
        "domain_name": f"{bucket}.s3.{cloud.region}.amazonaws.com",
    }


def _certificate(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = cloud, name
    return {"arn": props.get("certificate_arn")}


def _hosted_zone(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = props
    h = cloud.hex_id("hosted-zone", name, 8)
    return {
        "name_servers": [
            f"ns-{int(h[i * 2 : i * 2 + 2], 16) * 8 + i}.awsdns-{i:02d}.{tld}"
            for i, tld in enumerate(["com", "net", "org", "co.uk"])
        ]
    }


def _web_acl(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    h = cloud.hex_id("web-acl", name, 32)
    acl_id = f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"
    scope = str(props.get("scope", "REGIONAL")).lower()
    region = "us-east-1" if scope == "cloudfront" else cloud.region
    return {
        "acl_id": acl_id,
        "arn": f"arn:aws:wafv2:{region}:{cloud.account}:{scope}/webacl/{name}/{acl_id}",
    }


def _distribution(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = props
    distribution_id = "E" + cloud.hex_id("distribution", name, 13).upper()
    return {
        "distribution_id": distribution_id,
        "domain_name": f"d{cloud.hex_id('distribution-domain', name, 13)}.cloudfront.net",
        "arn": f"arn:aws:cloudfront::{cloud.account}:distribution/{distribution_id}",
    }


def _api_gateway(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    api_id = cloud.hex_id("api-gateway", name, 10)
    stage = props.get("stage", "prod")
    return {
        "api_id": api_id,
        "arn": f"arn:aws:apigateway:{cloud.region}::/restapis/{api_id}",
        "endpoint": f"https://{api_id}.execute-api.{cloud.region}.amazonaws.com/{stage}",
        "api_key_id": cloud.hex_id("api-key", name, 10),
    }


def _trail(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = props
    return {"arn": f"arn:aws:cloudtrail:{cloud.region}:{cloud.account}:trail/{name}"}


def _generic(cloud: SandboxCloud, name: str, props: dict[str, Any]) -> dict[str, Any]:
    _ = props
    return {"id": cloud.hex_id("resource", name, 17)}


_GENERATORS: dict[str, Generator] = {
    "network": _network,
    "secret": _secret,
    "registry": _registry,
    "database": _database,
    "instance": _instance,
    "service": _service,
    "function": _function,
    "bucket": _bucket,
    "certificate": _certificate,
    "hosted_zone": _hosted_zone,
    "web_acl": _web_acl,
    "distribution": _distribution,
    "api_gateway": _api_gateway,
    "trail": _trail,
}


class SandboxCloud:
    """In-process cloud control plane with asynchronous operations.

    Every mutation returns an operation token; ``poll`` reports the operation
    as pending until it has been polled ``completion_polls`` times. A create
    for a name that already exists (a retried create after a lost response)
    completes with the existing record instead of failing.

    Thread safe: workers may submit and poll concurrently.
    """

    def __init__(
        self,
        *,
        region: str = "us-east-1",
        account: str = "000000000000",
        completion_polls: int = 1,
        path: Path | None = None,
    ) -> None:
        self.region = region
        self.account = account
        self.completion_polls = completion_polls
        self._path = path
        self._lock = threading.RLock()
        self._snapshot = _Snapshot()
        self._failures: dict[tuple[str, str], str] = {}
        self._stalled: set[str] = set()
        # Mutating requests accepted, in order: (kind, name).
        self.requests: list[tuple[str, str]] = []
        if path is not None and path.exists():
            self._snapshot = _Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
            logger.debug("Sandbox loaded %d record(s) from %s", len(self._snapshot.records), path)

    def hex_id(self, kind: str, name: str, length: int) -> str:
        return _digest(self.account, self.region, kind, name)[:length]

    # --- fault injection -------------------------------------------------

    def fail_next(self, name: str, kind: OperationKind, message: str) -> None:
        """Make the next *kind* operation on *name* fail with *message*."""
        with self._lock:
            self._failures[(name, kind)] = message

    def stall(self, name: str) -> None:
        """Keep operations on *name* pending forever."""
        with self._lock:
            self._stalled.add(name)

    def release(self, name: str) -> None:
        """Let operations on *name* complete again after :meth:`stall`."""
        with self._lock:
            self._stalled.discard(name)

    # --- control plane ---------------------------------------------------

    def submit(
        self,
        kind: OperationKind,
        resource_type: str,
        name: str,
        properties: dict[str, Any] | None = None,
    ) -> str:
        """Accept a mutation and return its operation token."""
        with self._lock:
            record = self._snapshot.records.get(name)
            if record is not None and record.resource_type != resource_type:
                raise SandboxError(
                    f"'{name}' already exists as a {record.resource_type}, not a {resource_type}"
                )
            if kind in ("update", "delete") and record is None:
                raise SandboxError(f"'{name}' does not exist")

            for op in self._snapshot.operations.values():
                if op.name == name and op.state == "pending":
                    if op.kind == kind and op.properties == (properties or {}):
                        return op.token
                    raise SandboxError(f"'{name}' has a {op.kind} operation in progress")

            self._snapshot.sequence += 1
            token = f"op-{self._snapshot.sequence:06d}-{_digest(kind, name)[:8]}"
            self._snapshot.operations[token] = CloudOperation(
                token=token,
                kind=kind,
                resource_type=resource_type,
                name=name,
                properties=dict(properties or {}),
                polls_remaining=self.completion_polls,
            )
            self.requests.append((kind, name))
            logger.debug("Sandbox accepted %s %s (%s)", kind, name, token)
            self._save()
            return token

    def poll(self, token: str) -> CloudOperation:
        """Advance and return the operation identified by *token*.

        Once a poll has reported an operation as finished the operation is
        forgotten, and later polls of its token fail as unknown.
        """
        with self._lock:
            op = self._snapshot.operations.get(token)
            if op is None:
                raise SandboxError(f"Unknown operation: {token}")
            if op.state == "pending" and op.name in self._stalled:
                return op.model_copy(deep=True)
            if op.state == "pending" and op.polls_remaining > 1:
                op.polls_remaining -= 1
                self._save()
                return op.model_copy(deep=True)
            if op.state == "pending":
                op.polls_remaining = 0
                self._complete(op)
            del self._snapshot.operations[token]
            self._save()
            return op

    def cancel(self, token: str) -> bool:
        """Abort a pending operation. Returns ``False`` when it already finished."""
        with self._lock:
            op = self._snapshot.operations.get(token)
            if op is None or op.state != "pending":
                return False
            op.state = "canceled"
            self._save()
            logger.debug("Sandbox canceled %s", token)
            return True

    def describe(self, name: str) -> dict[str, Any] | None:
        """Current attributes of *name*, or ``None`` when it does not exist."""
        with self._lock:
            record = self._snapshot.records.get(name)
            return None if record is None else json.loads(json.dumps(record.attributes))

    def record(self, name: str) -> CloudRecord | None:
        with self._lock:
            record = self._snapshot.records.get(name)
            return None if record is None else record.model_copy(deep=True)

    def modify(self, name: str, **properties: Any) -> None:
        """Change a record behind the provisioner's back (out-of-band drift)."""
        with self._lock:
            record = self._snapshot.records.get(name)
            if record is None:
                raise SandboxError(f"'{name}' does not exist")
            record.properties.update(properties)
            self._save()

    def remove(self, name: str) -> None:
        """Delete a record out of band."""
        with self._lock:
            self._snapshot.records.pop(name, None)
            self._save()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._snapshot.records)

    def _complete(self, op: CloudOperation) -> None:
        message = self._failures.pop((op.name, op.kind), None)
        if message is not None:
            op.state = "failed"
            op.error = message
            logger.debug("Sandbox %s %s failed: %s", op.kind, op.name, message)
            return

        records = self._snapshot.records
        if op.kind == "delete":
            records.pop(op.name, None)
        elif op.kind == "create" and op.name in records:
            # Retried create: the first attempt already went through.
            records[op.name].properties = dict(op.properties)
        elif op.kind == "create":
            generate = _GENERATORS.get(op.resource_type, _generic)
            records[op.name] = CloudRecord(
                resource_type=op.resource_type,
                name=op.name,
                properties=dict(op.properties),
                generated=generate(self, op.name, op.properties),
            )
        else:
            record = records[op.name]
            record.properties = dict(op.properties)
            # Some generated values depend on properties (e.g. a service url).
            generate = _GENERATORS.get(op.resource_type, _generic)
            record.generated = generate(self, op.name, op.properties)
        op.state = "succeeded"
        logger.debug("Sandbox %s %s succeeded", op.kind, op.name)

    def _save(self) -> None:
        if self._path is None:
            return
        path = self._path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self._snapshot.model_dump_json(indent=2) + "\n")
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
