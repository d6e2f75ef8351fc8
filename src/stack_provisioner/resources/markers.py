"""Declarative field markers for resource models.

Two markers attach to Pydantic fields via ``Annotated``:

- ``Compare``: field-level comparison strategy used by the engine when diffing
- ``Static``: field must be known at plan time (no reference tokens)

Helper functions introspect these markers at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


@dataclass(frozen=True, slots=True)
class Compare:
    """How the engine should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"exact"``: strict equality comparison
    - ``"set"``: order-insensitive list comparison
    """

    strategy: CompareStrategy


@dataclass(frozen=True, slots=True)
class Static:
    """Field is consumed during planning, so it cannot wait for another resource."""


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(model_or_cls: Any, marker_type: type[M]) -> list[tuple[str, M]]:
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies from ``Compare`` markers."""
    return {name: marker.strategy for name, marker in _iter_marked_fields(resource_or_cls, Compare)}


def static_fields(resource_or_cls: Any) -> list[str]:
    """Names of fields marked ``Static``."""
    return [name for name, _ in _iter_marked_fields(resource_or_cls, Static)]
