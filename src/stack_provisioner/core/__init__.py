"""Core infrastructure components for Stack Provisioner."""

from stack_provisioner.core.provider import CloudProvider
from stack_provisioner.core.sandbox import SandboxCloud, SandboxError
from stack_provisioner.core.state import ResourceInstance, State

__all__ = ["CloudProvider", "ResourceInstance", "SandboxCloud", "SandboxError", "State"]
