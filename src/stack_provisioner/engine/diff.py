"""Attribute comparison used by planning and apply-time re-checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from stack_provisioner.resources.markers import CompareStrategy


def values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            try:
                return set(desired) != set(prior)
            except TypeError:
                return sorted(map(repr, desired)) != sorted(map(repr, prior))
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


def diff_attributes(
    planned: Mapping[str, Any],
    prior: Mapping[str, Any],
    strategies: Mapping[str, CompareStrategy],
) -> dict[str, dict[str, Any]]:
    """``{key: {"from": prior, "to": planned}}`` for every planned key that changed."""
    return {
        k: {"from": prior.get(k), "to": v}
        for k, v in planned.items()
        if values_differ(v, prior.get(k), strategy=strategies.get(k))
    }
