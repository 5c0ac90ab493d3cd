"""State snapshot data models."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from stackwright.config.models import ResourceType


STATE_FORMAT_VERSION = "1"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateEntry(BaseModel):
    """Last known state of one applied resource."""

    config_hash: str = Field(..., description="Hash of the declaration last applied")
    external_id: str = Field(..., description="Cloud identifier returned by the adapter")
    resource_type: ResourceType = Field(..., description="Resource type at apply time")
    depends_on: List[str] = Field(
        default_factory=list, description="Dependencies at apply time, used to order deletes"
    )
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Resolved attributes last sent to the adapter"
    )
    pending: bool = Field(
        False, description="Created but not yet confirmed usable; the next apply resumes waiting"
    )
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")


class StateSnapshot(BaseModel):
    """Mapping of resource id to StateEntry; the source of truth for diffs."""

    version: str = Field(STATE_FORMAT_VERSION, description="State file format version")
    resources: Dict[str, StateEntry] = Field(default_factory=dict)

    def get(self, resource_id: str) -> Optional[StateEntry]:
        """Get an entry by resource id."""
        return self.resources.get(resource_id)

    def has(self, resource_id: str) -> bool:
        """Check if a resource is recorded."""
        return resource_id in self.resources

    def ids(self) -> List[str]:
        """Recorded resource ids in insertion order."""
        return list(self.resources)

    def is_empty(self) -> bool:
        return not self.resources

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateSnapshot":
        """Create a snapshot from decoded JSON."""
        return cls.model_validate(data)
