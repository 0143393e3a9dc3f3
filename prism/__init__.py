"""Prism: conversation-driven Terraform change orchestration."""

__version__ = "0.1.0"
