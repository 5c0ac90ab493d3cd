"""Declaration file schema and loading."""

from .models import (
    DeclarationSet,
    ResourceDeclaration,
    ResourceType,
    RetrySettings,
    RollbackMode,
    RunSettings,
    iter_references,
)
from .parser import DeclarationLoader, apply_overrides, format_errors, load_declarations

__all__ = [
    "DeclarationSet",
    "ResourceDeclaration",
    "ResourceType",
    "RetrySettings",
    "RollbackMode",
    "RunSettings",
    "iter_references",
    "DeclarationLoader",
    "apply_overrides",
    "format_errors",
    "load_declarations",
]
