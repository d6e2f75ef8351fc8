from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from stack_provisioner.core.state import (
    ResourceInstance,
    State,
    compute_attributes_hash,
    compute_state_digest,
)


def _instance(**overrides: object) -> ResourceInstance:
    attrs = {"bucket_name": "shop-logs", "arn": "arn:aws:s3:::shop-logs"}
    fields: dict[str, object] = {
        "name": "logs",
        "resource_type": "bucket",
        "attributes": attrs,
        "attributes_hash": compute_attributes_hash(attrs),
        "dependencies": ["key"],
    }
    fields.update(overrides)
    return ResourceInstance(**fields)  # type: ignore[arg-type]


def test_state_digest_excludes_timestamps() -> None:
    t0 = datetime(2020, 1, 1, tzinfo=UTC)
    t1 = t0 + timedelta(days=1)

    state = State(stack="shop-prod", resources={"logs": _instance(created_at=t0, updated_at=t0)})
    d0 = compute_state_digest(state)

    state.resources["logs"].created_at = t1
    state.resources["logs"].updated_at = t1

    assert compute_state_digest(state) == d0


def test_state_digest_excludes_outputs() -> None:
    state = State(stack="shop-prod", resources={"logs": _instance()})
    d0 = compute_state_digest(state)

    state.outputs = {"logs.arn": "arn:aws:s3:::shop-logs"}

    assert compute_state_digest(state) == d0


def test_state_digest_includes_serial_and_lineage() -> None:
    state = State(stack="shop-prod")
    d0 = compute_state_digest(state)

    state.serial += 1
    assert compute_state_digest(state) != d0

    state.serial = 0
    state.lineage = "different"
    assert compute_state_digest(state) != d0


def test_state_digest_includes_taint() -> None:
    state = State(stack="shop-prod", resources={"logs": _instance()})
    d0 = compute_state_digest(state)

    state.resources["logs"].status = "tainted"

    assert state.resources["logs"].tainted
    assert compute_state_digest(state) != d0


def test_attributes_hash_ignores_key_order() -> None:
    assert compute_attributes_hash({"a": 1, "b": 2}) == compute_attributes_hash({"b": 2, "a": 1})


class TestPersistence:
    def test_save_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        state = State(stack="shop-prod", serial=3, resources={"logs": _instance()})
        state.save(path)

        loaded = State.load(path)
        assert loaded.serial == 3
        assert loaded.lineage == state.lineage
        assert loaded.resources["logs"].address == "bucket.logs"
        assert compute_state_digest(loaded) == compute_state_digest(state)

    def test_overwrite_keeps_backup(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        State(stack="shop-prod", serial=1).save(path)
        State(stack="shop-prod", serial=2).save(path)

        assert State.load(path).serial == 2
        assert State.load(Path(str(path) + ".backup")).serial == 1

    def test_load_or_create_new(self, tmp_path: Path) -> None:
        state = State.load_or_create(tmp_path / "missing.json", "shop-prod")
        assert state.stack == "shop-prod"
        assert state.serial == 0
        assert state.resources == {}
