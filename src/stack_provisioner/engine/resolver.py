"""Output resolution: bind reference tokens to provisioned attribute values."""

from __future__ import annotations

import copy
import threading
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from stack_provisioner.engine.errors import UnresolvedReferenceError
from stack_provisioner.resources.references import Reference, iter_references, substitute

if TYPE_CHECKING:
    from collections.abc import Mapping


MISSING = object()


def lookup_path(attrs: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot-separated path (``subnets.private.0``) in nested attributes."""
    current: Any = attrs
    for segment in path.split("."):
        if isinstance(current, dict | MappingProxyType) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return MISSING
    return current


class AttributeTable:
    """Resolved attributes of provisioned resources.

    Each resource is published at most once per pass, by the operation that
    provisioned it, and only after that operation completed. Readers get a
    read-only view.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attrs: dict[str, Mapping[str, Any]] = {}

    def publish(self, resource_id: str, attributes: Mapping[str, Any]) -> None:
        frozen = MappingProxyType(copy.deepcopy(dict(attributes)))
        with self._lock:
            if resource_id in self._attrs:
                raise ValueError(f"Attributes of '{resource_id}' were already published")
            self._attrs[resource_id] = frozen

    def withdraw(self, resource_id: str) -> None:
        """Forget a resource (deleted, or about to be replaced by an update)."""
        with self._lock:
            self._attrs.pop(resource_id, None)

    def get(self, resource_id: str) -> Mapping[str, Any] | None:
        with self._lock:
            return self._attrs.get(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        with self._lock:
            return resource_id in self._attrs

    def resolve(self, reference: Reference) -> Any:
        attrs = self.get(reference.resource_id)
        if attrs is None:
            raise UnresolvedReferenceError(
                reference.resource_id, reference.attribute, "resource is not provisioned"
            )
        value = lookup_path(attrs, reference.attribute)
        if value is MISSING:
            raise UnresolvedReferenceError(
                reference.resource_id, reference.attribute, "attribute not found"
            )
        return copy.deepcopy(value)


def resolve_references(value: Any, table: AttributeTable) -> Any:
    """Return a copy of *value* with every reference token substituted."""
    return substitute(value, table.resolve)


def unresolved_references(value: Any, table: AttributeTable) -> list[Reference]:
    """References in *value* whose producer has not been published yet."""
    return sorted({r for r in iter_references(value) if r.resource_id not in table})
