"""YAML/JSON declaration file loader."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from stackwright.config.models import DeclarationSet
from stackwright.utils.errors import ConfigValidationError
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


class DeclarationLoader:
    """Loads and validates a declaration file."""

    JSON_SUFFIXES = {".json"}

    def __init__(self, path: str):
        """Initialize loader.

        Args:
            path: Path to a ``.yaml``, ``.yml`` or ``.json`` declaration file
        """
        self.path = Path(path)
        self.data: Dict[str, Any] = {}

    def load(self) -> DeclarationSet:
        """Load and validate the declaration file.

        Returns:
            Validated DeclarationSet

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigValidationError: If the file cannot be parsed or is invalid
        """
        if not self.path.exists():
            raise FileNotFoundError(f"Declaration file not found: {self.path}")

        self.data = self._read()
        declarations = self.parse(self.data)

        logger.debug(
            f"Loaded {len(declarations.resources)} resource declarations from {self.path}"
        )
        return declarations

    @staticmethod
    def parse(data: Any) -> DeclarationSet:
        """Validate already-decoded declaration data.

        Args:
            data: Mapping decoded from YAML or JSON

        Returns:
            Validated DeclarationSet

        Raises:
            ConfigValidationError: If validation fails
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Declaration file must contain a mapping at the top level")

        try:
            return DeclarationSet.model_validate(data)
        except PydanticValidationError as e:
            errors = [
                {"loc": list(error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]
            raise ConfigValidationError(
                f"Declaration validation failed with {len(errors)} error(s)",
                errors,
                cause=e,
            )

    def _read(self) -> Dict[str, Any]:
        """Decode the file according to its suffix."""
        text = self.path.read_text(encoding="utf-8")

        if self.path.suffix.lower() in self.JSON_SUFFIXES:
            try:
                return json.loads(text) if text.strip() else {}
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Failed to parse JSON: {e}", cause=e)

        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}", cause=e)


def load_declarations(path: str, overrides: Optional[Dict[str, Any]] = None) -> DeclarationSet:
    """Load a declaration file and apply run setting overrides.

    Args:
        path: Declaration file path
        overrides: Run setting values (e.g. from CLI flags); ``None`` values are ignored

    Returns:
        Validated DeclarationSet
    """
    declarations = DeclarationLoader(path).load()
    if not overrides:
        return declarations
    return apply_overrides(declarations, overrides)


def apply_overrides(declarations: DeclarationSet, overrides: Dict[str, Any]) -> DeclarationSet:
    """Return a copy of ``declarations`` with run settings overridden.

    Overrides are re-validated so that CLI values obey the same constraints as
    the file.
    """
    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return declarations

    settings_data = declarations.settings.model_dump()
    settings_data.update(changes)
    data = declarations.model_dump()
    data["settings"] = settings_data
    return DeclarationLoader.parse(data)


def format_errors(error: ConfigValidationError) -> List[str]:
    """Flatten a ConfigValidationError into display lines."""
    if not error.errors:
        return [error.message]
    return [
        f"{' -> '.join(str(loc) for loc in item.get('loc', []))}: {item.get('msg', 'Unknown error')}"
        for item in error.errors
    ]
