"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from stack_provisioner.config.loader import ConfigError, load_config
from stack_provisioner.config.registry import default_registry
from stack_provisioner.config.schema import Config, ProviderConfig, StackSettings
from stack_provisioner.core.provider import CloudProvider
from stack_provisioner.core.state import State
from stack_provisioner.engine.engine import StackEngine

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from stack_provisioner.engine.executor import ProgressCallback
    from stack_provisioner.engine.types import ApplyResult, DriftEntry, Plan, RunReport

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "StackSettings",
    "State",
    "apply",
    "drift",
    "engine_from_config",
    "load",
    "load_config",
    "outputs",
    "plan",
    "plan_and_apply",
    "refresh",
    "run",
    "save_state",
]

# Seconds to wait for another process holding the state lock.
LOCK_TIMEOUT = 30.0


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def engine_from_config(config: Config) -> StackEngine:
    """Build a ``StackEngine`` from a ``Config`` instance."""
    settings = config.settings
    provider = CloudProvider(
        region=settings.region,
        account=settings.account,
        sandbox_path=config.provider.sandbox_path,
        completion_polls=config.provider.completion_polls,
    )
    return StackEngine(
        provider=provider,
        settings=settings,
        state_path=config.state_path,
        registry=default_registry(),
        options=config.apply,
        lock_timeout=LOCK_TIMEOUT,
    )


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    return engine_from_config(config).plan(config.resources, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config)
    return engine.apply(plan_obj, progress=progress, cancel_event=cancel_event)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = True) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config)


def run(
    config: Config,
    *,
    destroy: bool = False,
    progress: ProgressCallback | None = None,
) -> RunReport:
    """Drive one full pass (plan, apply, reconcile) and report where it ended."""
    engine = engine_from_config(config)
    return engine.run(config.resources, destroy=destroy, progress=progress)


def refresh(config: Config) -> tuple[list[DriftEntry], State]:
    """Refresh state from the provider (not persisted).

    Returns the drift entries and the new state. Call :func:`save_state` to
    persist the returned state to disk.
    """
    from stack_provisioner.engine.engine import detect_drift

    engine = engine_from_config(config)
    old_state, new_state = engine.refresh()
    return detect_drift(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    from stack_provisioner.engine.engine import compute_outputs
    from stack_provisioner.engine.lock import StateLock

    with StateLock(config.state_path, timeout=LOCK_TIMEOUT):
        state.outputs = compute_outputs(state)
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config) -> list[DriftEntry]:
    """Detect drift between state file and the provider."""
    return engine_from_config(config).drift()


def outputs(config: Config) -> dict[str, Any]:
    """The flat ``"<id>.<attribute>"`` output table of the provisioned stack."""
    return engine_from_config(config).outputs()
