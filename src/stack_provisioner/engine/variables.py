"""Stack variable substitution.

Physical names are usually derived from stack-wide settings
(``${project}-db-credentials``). Variables use the same ``${…}`` syntax as
references but never contain a dot, so the two never collide.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stack_provisioner.config.schema import StackSettings


def stack_variables(settings: StackSettings) -> dict[str, str]:
    """Built-in variables available to every resource property."""
    return {
        "project": settings.project,
        "environment": settings.environment,
        "region": settings.region,
        "account": settings.account,
        "stack": settings.stack_name,
    }


def resolve_variables(value: Any, variables: dict[str, str]) -> Any:
    """Replace ``${name}`` variables in string values, recursively.

    *variables* maps variable names to their values, e.g.
    ``{"project": "shop"}``.
    """
    if isinstance(value, str):
        for var, replacement in variables.items():
            value = value.replace(f"${{{var}}}", replacement)
        return value
    if isinstance(value, dict):
        return {k: resolve_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_variables(v, variables) for v in value]
    return value
