"""Reference tokens between resources.

A property value may point at an attribute of another resource with a
``${<resource-id>.<attribute.path>}`` token. A string that consists of a single
token stands for the raw attribute value; tokens embedded in a longer string
are interpolated as text (``"postgres://${db.endpoint}:5432"``).

Tokens without a dot (``${project}``) are stack variables and are handled by
:mod:`stack_provisioner.engine.variables`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_TOKEN = re.compile(r"\$\{([A-Za-z][A-Za-z0-9_-]*)\.([A-Za-z0-9_][A-Za-z0-9_.-]*)\}")


@dataclass(frozen=True, slots=True, order=True)
class Reference:
    """A pointer to ``attribute`` (dot path) of resource ``resource_id``."""

    resource_id: str
    attribute: str

    @property
    def token(self) -> str:
        return f"${{{self.resource_id}.{self.attribute}}}"

    @property
    def root_attribute(self) -> str:
        """First segment of the attribute path (the attribute name itself)."""
        return self.attribute.split(".", 1)[0]

    def __str__(self) -> str:
        return self.token


def ref(resource_id: str, attribute: str) -> str:
    """Build a reference token for use in Python-defined resources."""
    return Reference(resource_id, attribute).token


def parse_token(value: str) -> Reference | None:
    """Return the reference if *value* is exactly one token, else ``None``."""
    m = _TOKEN.fullmatch(value)
    if m is None:
        return None
    return Reference(m.group(1), m.group(2))


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every reference found in *value*, recursing into dicts and lists."""
    if isinstance(value, str):
        for m in _TOKEN.finditer(value):
            yield Reference(m.group(1), m.group(2))
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def has_references(value: Any) -> bool:
    return next(iter_references(value), None) is not None


def substitute(value: Any, lookup: Any) -> Any:
    """Replace tokens in *value* using ``lookup(reference) -> Any``, recursively.

    Whole-token strings take the looked-up value as-is; embedded tokens are
    rendered with ``str()``.
    """
    if isinstance(value, str):
        whole = parse_token(value)
        if whole is not None:
            return lookup(whole)
        return _TOKEN.sub(lambda m: str(lookup(Reference(m.group(1), m.group(2)))), value)
    if isinstance(value, dict):
        return {k: substitute(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, lookup) for v in value]
    return value
