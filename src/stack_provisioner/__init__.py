"""Terraform-style provisioning for declarative cloud stacks."""

__version__ = "0.1.0"
