"""Mapping of resource types to adapters."""

from typing import Dict, List

from stackwright.config.models import ResourceType
from stackwright.utils.aws_client import AWSClientManager
from stackwright.utils.errors import ErrorCategory, ErrorContext, PermanentAPIError

from .base import ResourceAdapter
from .ec2 import EC2InstanceAdapter
from .ecr import ECRRepositoryAdapter
from .eks import EKSClusterAdapter
from .rds import DBSubnetGroupAdapter, RDSInstanceAdapter
from .route53 import Route53RecordAdapter
from .security_group import SecurityGroupAdapter, SecurityGroupRuleAdapter
from .vpc import SubnetAdapter, VpcAdapter


AWS_ADAPTERS = (
    VpcAdapter,
    SubnetAdapter,
    SecurityGroupAdapter,
    SecurityGroupRuleAdapter,
    EC2InstanceAdapter,
    DBSubnetGroupAdapter,
    RDSInstanceAdapter,
    ECRRepositoryAdapter,
    EKSClusterAdapter,
    Route53RecordAdapter,
)


class AdapterRegistry:
    """Resolves the adapter responsible for a resource type."""

    def __init__(self, adapters: Dict[ResourceType, ResourceAdapter] = None):
        self._adapters: Dict[ResourceType, ResourceAdapter] = dict(adapters or {})

    def register(self, resource_type: ResourceType, adapter: ResourceAdapter) -> None:
        """Register (or replace) the adapter for a resource type."""
        self._adapters[ResourceType(resource_type)] = adapter

    def get(self, resource_type: ResourceType) -> ResourceAdapter:
        """Get the adapter for a resource type.

        Raises:
            PermanentAPIError: If no adapter is registered for the type
        """
        adapter = self._adapters.get(ResourceType(resource_type))
        if adapter is None:
            raise PermanentAPIError(
                f"No adapter registered for resource type {ResourceType(resource_type).value}",
                category=ErrorCategory.CONFIGURATION,
                context=ErrorContext(resource_type=ResourceType(resource_type).value)
            )
        return adapter

    def types(self) -> List[ResourceType]:
        return list(self._adapters)

    def __contains__(self, resource_type) -> bool:
        return ResourceType(resource_type) in self._adapters


def build_aws_registry(clients: AWSClientManager, wait: bool = True) -> AdapterRegistry:
    """Create a registry with a boto3-backed adapter for every resource type.

    Args:
        clients: AWS client manager shared by all adapters
        wait: Block on service waiters after mutating calls

    Returns:
        AdapterRegistry covering every ResourceType
    """
    registry = AdapterRegistry()
    for adapter_cls in AWS_ADAPTERS:
        registry.register(adapter_cls.resource_type, adapter_cls(clients, wait=wait))
    return registry
