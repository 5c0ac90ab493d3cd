"""Resource adapters for each supported AWS resource type."""

from .base import ResourceAdapter
from .ec2 import EC2InstanceAdapter
from .ecr import ECRRepositoryAdapter
from .eks import EKSClusterAdapter
from .rds import DBSubnetGroupAdapter, RDSInstanceAdapter
from .registry import AWS_ADAPTERS, AdapterRegistry, build_aws_registry
from .route53 import Route53RecordAdapter
from .security_group import SecurityGroupAdapter, SecurityGroupRuleAdapter
from .vpc import SubnetAdapter, VpcAdapter

__all__ = [
    "ResourceAdapter",
    "AdapterRegistry",
    "build_aws_registry",
    "AWS_ADAPTERS",
    "VpcAdapter",
    "SubnetAdapter",
    "SecurityGroupAdapter",
    "SecurityGroupRuleAdapter",
    "EC2InstanceAdapter",
    "DBSubnetGroupAdapter",
    "RDSInstanceAdapter",
    "ECRRepositoryAdapter",
    "EKSClusterAdapter",
    "Route53RecordAdapter",
]
