"""Engine types (plan, changes, metadata, apply outcomes)."""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    stack: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    name: str
    resource_type: str
    action: Action
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    depends_on: list[str] = Field(default_factory=list)
    # Why a change is planned when the diff alone does not tell (tainted, pending inputs).
    reason: str | None = None

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)

    def operations(self) -> list[str]:
        """The mutating operations in plan order, e.g. ``["create db", "delete old"]``."""
        return [f"{c.action.value} {c.name}" for c in self.changes if c.action != Action.NOOP]

    def fingerprint(self) -> str:
        """Digest of everything but the creation timestamp.

        Two plans computed from the same configuration and state have the
        same fingerprint.
        """
        data = self.model_dump(mode="json", exclude={"metadata": {"created_at"}})
        return hashlib.sha256(_canonical_json(data).encode("utf-8")).hexdigest()

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class ApplyOptions(BaseModel):
    """Execution knobs for apply.

    Attributes:
        max_workers: Operations allowed in flight at once
        timeout_seconds: Bound on a single operation, ``None`` waits forever
        poll_interval_seconds: Delay between completion polls of pending operations
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_workers: int = Field(default=1, ge=1, le=64)
    timeout_seconds: float | None = Field(default=None, gt=0)
    poll_interval_seconds: float = Field(default=0.5, ge=0)


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    BLOCKED = "blocked"
    CANCELED = "canceled"


class OperationOutcome(BaseModel):
    name: str
    resource_type: str
    action: Action
    status: OutcomeStatus
    error: str | None = None
    blocked_by: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT)


class ApplyResult(BaseModel):
    applied: list[ResourceChange] = Field(default_factory=list)
    outcomes: list[OperationOutcome] = Field(default_factory=list)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        return counts

    def outcome(self, name: str) -> OperationOutcome | None:
        return next((o for o in self.outcomes if o.name == name), None)

    def failures(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if o.failed]

    def blocked(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.BLOCKED]

    @property
    def ok(self) -> bool:
        return all(
            o.status in (OutcomeStatus.APPLIED, OutcomeStatus.UNCHANGED) for o in self.outcomes
        )


class DriftEntry(BaseModel):
    """A discrepancy between recorded state and what the provider reports."""

    name: str
    resource_type: str
    missing: bool = False
    diff: dict[str, Any] = Field(default_factory=dict)


class DriverPhase(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    RECONCILING = "reconciling"
    SETTLED = "settled"
    FAILED = "failed"


class RunReport(BaseModel):
    phase: DriverPhase
    # Phase the run was in when it failed.
    failed_phase: DriverPhase | None = None
    plan: Plan | None = None
    result: ApplyResult | None = None
    drift: list[DriftEntry] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def settled(self) -> bool:
        return self.phase == DriverPhase.SETTLED
