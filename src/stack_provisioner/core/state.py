"""State management for tracking provisioned resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ResourceStatus = Literal["provisioned", "tainted"]


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A tracked resource in the state file.

    Attributes:
        name: Resource id, unique within the stack (e.g. "db")
        resource_type: Type of the resource (e.g. "database")
        attributes: Declared properties plus provider-generated outputs
        attributes_hash: SHA256 hash for change detection
        dependencies: Ids this resource was provisioned after
        status: ``tainted`` when the last operation did not complete
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    name: str
    resource_type: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    status: ResourceStatus = "provisioned"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    @property
    def tainted(self) -> bool:
        return self.status == "tainted"


class State(BaseModel):
    """Terraform-style state file for tracking provisioned resources.

    Attributes:
        version: State file format version
        stack: Stack name (``<project>-<environment>``)
        resources: Mapping of resource ids to instances
        outputs: Flat ``"<id>.<attribute>"`` table of generated values
    """

    version: int = 1
    stack: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        content = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text())
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, stack: str) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for stack %s", stack)
        return cls(stack=stack)


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Outputs are derived from resource
    attributes and are left out as well.
    """
    resources = [
        {
            "name": name,
            "resource_type": inst.resource_type,
            "attributes_hash": inst.attributes_hash,
            "dependencies": sorted(inst.dependencies),
            "status": inst.status,
        }
        for name, inst in sorted(state.resources.items(), key=lambda kv: kv[0])
    ]

    digestable = {
        "version": state.version,
        "stack": state.stack,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
