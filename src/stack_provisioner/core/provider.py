"""Cloud provider - connection configuration for the control plane."""

from functools import cached_property
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict

from stack_provisioner.core.sandbox import SandboxCloud


class CloudProvider(BaseModel):
    """Connection configuration for the cloud control plane.

    By default the provider talks to a ``SandboxCloud`` built from the
    fields below. Use the `from_client` classmethod to inject an existing
    client (a shared sandbox, or a mock in tests).

    Examples:
        # Sandbox persisted next to the stack file
        provider = CloudProvider(region="eu-west-1", sandbox_path=Path(".stack-cloud.json"))

        # Injected client
        provider = CloudProvider.from_client(SandboxCloud(completion_polls=3))
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str = "us-east-1"
    account: str = "000000000000"
    sandbox_path: Path | None = None
    completion_polls: int = 1

    # Injected client (shared sandbox / testing)
    _injected_client: SandboxCloud | None = None

    @classmethod
    def from_client(cls, client: SandboxCloud) -> Self:
        """Create a provider with an injected client.

        Args:
            client: A pre-configured SandboxCloud (or compatible) instance
        """
        provider = cls.model_construct()
        provider._injected_client = client
        return provider

    @cached_property
    def client(self) -> SandboxCloud:
        """Get the control plane client."""
        if self._injected_client is not None:
            return self._injected_client

        return SandboxCloud(
            region=self.region,
            account=self.account,
            completion_polls=self.completion_polls,
            path=self.sandbox_path,
        )
