"""Base resource class for stack resources."""

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from stack_provisioner.resources.markers import Compare, Static
from stack_provisioner.resources.references import Reference, iter_references


class Resource(BaseModel):
    """Base class for all stack resources (the descriptor of one resource).

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    # Attributes generated by the provider once the resource exists.
    outputs: ClassVar[frozenset[str]] = frozenset()
    # Attributes computed by the engine during planning (subnets, ingress).
    derived_attributes: ClassVar[frozenset[str]] = frozenset()
    network_attached: ClassVar[bool] = False
    accepts_ingress: ClassVar[bool] = False
    # Field holding the port peers reach when a ``reaches`` entry has no port.
    ingress_port_field: ClassVar[str | None] = None

    name: str = Field(pattern=r"^[A-Za-z][A-Za-z0-9_-]*$")
    description: str = ""
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    # Lifecycle
    depends_on: Annotated[list[str], Static()] = []

    def properties(self) -> dict[str, Any]:
        """The property bag: every declared field except identity and lifecycle."""
        return self.model_dump(mode="json", exclude={"name", "depends_on"})

    def references(self) -> list[Reference]:
        """Distinct references found anywhere in the property bag, sorted."""
        return sorted(set(iter_references(self.properties())))

    def dependency_ids(self) -> list[str]:
        """Ids this resource must be provisioned after (references + depends_on)."""
        ids = {r.resource_id for r in self.references()}
        ids.update(self.depends_on)
        return sorted(ids)

    @classmethod
    def attribute_names(cls) -> frozenset[str]:
        """Attributes dependents may reference."""
        fields = set(cls.model_fields) - {"name", "depends_on"}
        return frozenset(fields) | cls.outputs | cls.derived_attributes | {"name"}

    @property
    def address(self) -> str:
        """Display address (e.g. ``database.main``)."""
        return f"{self.resource_type}.{self.name}"
