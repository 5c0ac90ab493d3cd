"""Declarative provisioning orchestrator for AWS infrastructure."""

__version__ = "0.1.0"
