"""Pydantic models for the declaration file schema."""

import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator


RESOURCE_ID_PATTERN = r"^[A-Za-z0-9_.-]+$"

# ${vpc-main} anywhere inside a string attribute value
REFERENCE_PATTERN = re.compile(r"\$\{([A-Za-z0-9_.-]+)\}")


class ResourceType(str, Enum):
    """Resource types the orchestrator knows how to provision."""

    VPC = "VPC"
    SUBNET = "Subnet"
    SECURITY_GROUP = "SecurityGroup"
    SECURITY_GROUP_RULE = "SecurityGroupRule"
    EC2_INSTANCE = "EC2Instance"
    DB_SUBNET_GROUP = "DBSubnetGroup"
    RDS_INSTANCE = "RDSInstance"
    ECR_REPOSITORY = "ECRRepository"
    EKS_CLUSTER = "EKSCluster"
    ROUTE53_RECORD = "Route53Record"


class RollbackMode(str, Enum):
    """What to do with already-applied changes when a run has failures."""

    NONE = "none"
    AUTOMATIC = "automatic"


def iter_references(value: Any) -> Iterator[str]:
    """Yield every resource id referenced through ``${id}`` in a value.

    Nested dicts and lists are scanned recursively.
    """
    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            yield match.group(1)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


class ResourceDeclaration(BaseModel):
    """A single declared resource."""

    id: str = Field(..., min_length=1, pattern=RESOURCE_ID_PATTERN, description="Logical resource ID")
    type: ResourceType = Field(..., description="Resource type")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Adapter attributes, named after the AWS API parameters"
    )
    depends_on: List[str] = Field(
        default_factory=list, description="Explicit dependencies on other resource IDs"
    )

    @field_validator("depends_on")
    @classmethod
    def validate_depends_on(cls, v: List[str]) -> List[str]:
        """Drop duplicate dependencies while keeping their order."""
        seen: Set[str] = set()
        unique = []
        for dep in v:
            if dep not in seen:
                seen.add(dep)
                unique.append(dep)
        return unique

    def references(self) -> List[str]:
        """Resource ids referenced from attributes, in first-seen order."""
        seen: Dict[str, None] = {}
        for ref in iter_references(self.attributes):
            seen.setdefault(ref, None)
        return list(seen)

    def all_dependencies(self) -> List[str]:
        """Explicit dependencies followed by inferred ones."""
        deps = list(self.depends_on)
        for ref in self.references():
            if ref not in deps:
                deps.append(ref)
        return deps


class RetrySettings(BaseModel):
    """Retry behaviour for adapter calls."""

    max_attempts: int = Field(5, ge=1, le=20)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """max_delay must not be below base_delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class RunSettings(BaseModel):
    """Orchestrator run settings."""

    concurrency: int = Field(4, ge=1, le=64, description="Maximum concurrent adapter calls")
    timeout: Optional[float] = Field(None, gt=0, description="Run-level timeout in seconds")
    state_path: Optional[str] = Field(None, description="State file path")
    lock_timeout: float = Field(30.0, ge=0, description="Seconds to wait for the run lock")
    rollback: RollbackMode = RollbackMode.NONE
    retry: RetrySettings = Field(default_factory=RetrySettings)


class DeclarationSet(BaseModel):
    """Contents of a declaration file."""

    version: str = "1"
    environment: str = Field("default", min_length=1, pattern=RESOURCE_ID_PATTERN)
    region: Optional[str] = None
    settings: RunSettings = Field(default_factory=RunSettings)
    resources: List[ResourceDeclaration] = Field(default_factory=list)

    @field_validator("resources")
    @classmethod
    def validate_unique_ids(cls, v: List[ResourceDeclaration]) -> List[ResourceDeclaration]:
        """Resource ids must be unique."""
        seen: Set[str] = set()
        for resource in v:
            if resource.id in seen:
                raise ValueError(f"Duplicate resource id '{resource.id}'")
            seen.add(resource.id)
        return v

    @classmethod
    def empty(cls, **kwargs) -> "DeclarationSet":
        """A declaration set with no resources."""
        return cls(resources=[], **kwargs)

    def get(self, resource_id: str) -> Optional[ResourceDeclaration]:
        """Get a declaration by id."""
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None

    def ids(self) -> List[str]:
        """Resource ids in declaration order."""
        return [resource.id for resource in self.resources]

    def resolve_state_path(self, base_dir: Optional[Path] = None) -> Path:
        """State file location for this environment."""
        if self.settings.state_path:
            path = Path(self.settings.state_path)
        else:
            path = Path(".stackwright") / "state" / f"{self.environment}.json"

        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return path
