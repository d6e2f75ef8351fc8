"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from stack_provisioner.config import load
from stack_provisioner.config.registry import default_registry
from stack_provisioner.config.schema import StackSettings
from stack_provisioner.core import CloudProvider, SandboxCloud
from stack_provisioner.engine import StackEngine
from stack_provisioner.engine.types import ApplyOptions

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from stack_provisioner.config.schema import Config

_STACK_ENV_VARS = (
    "STACK_PROJECT",
    "STACK_ENVIRONMENT",
    "STACK_REGION",
    "STACK_ACCOUNT",
    "STACK_LOG",
)


@pytest.fixture(autouse=True)
def _clean_stack_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove STACK_* env vars so unit tests don't leak local settings."""
    for var in _STACK_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "stack.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "stack.yaml")

    return _make


@pytest.fixture
def settings() -> StackSettings:
    return StackSettings(project="shop", environment="test")


@pytest.fixture
def sandbox() -> SandboxCloud:
    return SandboxCloud(region="us-east-1", account="123456789012")


@pytest.fixture
def make_engine(
    tmp_path: Path, settings: StackSettings, sandbox: SandboxCloud
) -> Callable[..., StackEngine]:
    """Factory fixture: an engine over the shared sandbox with fast polling."""

    def _make(**options: object) -> StackEngine:
        opts = {"poll_interval_seconds": 0, **options}
        return StackEngine(
            provider=CloudProvider.from_client(sandbox),
            settings=settings,
            state_path=tmp_path / "state.json",
            registry=default_registry(),
            options=ApplyOptions.model_validate(opts),
        )

    return _make
