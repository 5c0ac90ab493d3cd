"""EKS cluster adapter."""

from typing import Any, Dict, Optional, Set

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.errors import ErrorCategory, PermanentAPIError
from stackwright.utils.logging import get_logger

from .base import ResourceAdapter, pick, tag_dict, tag_list

logger = get_logger(__name__)


def enabled_log_types(logging_config: Optional[Dict[str, Any]]) -> Set[str]:
    """Control plane log types switched on in an EKS ``logging`` structure."""
    return {
        log_type
        for setup in (logging_config or {}).get('clusterLogging', [])
        if setup.get('enabled')
        for log_type in setup.get('types', [])
    }


class EKSClusterAdapter(ResourceAdapter):
    """Adapter for EKS control planes. The external id is the cluster name."""

    resource_type = ResourceType.EKS_CLUSTER
    service_name = 'eks'
    not_found_codes = ('ResourceNotFoundException',)
    immutable_attributes = ('name', 'roleArn')
    already_exists_codes = ('ResourceInUseException',)
    name_attribute = 'name'

    # Keys of resourcesVpcConfig that update_cluster_config accepts
    MUTABLE_VPC_KEYS = ('endpointPublicAccess', 'endpointPrivateAccess', 'publicAccessCidrs')

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = pick(attributes, (
            'name',
            'version',
            'roleArn',
            'resourcesVpcConfig',
            'kubernetesNetworkConfig',
            'logging',
            'tags',
        ))
        if token:
            params['clientRequestToken'] = token

        response = self.client.create_cluster(**params)
        name = response['cluster']['name']
        logger.info(f"Creating EKS cluster {name}")
        return name

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        self._wait('cluster_active', name=external_id)

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        cluster = self._describe(external_id)
        return self._attributes(cluster) if cluster is not None else None

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        cluster = self._describe(external_id)
        current = self._attributes(cluster) if cluster is not None else None
        self.require_mutable(external_id, current, attributes)

        desired_vpc = attributes.get('resourcesVpcConfig') or {}
        current_vpc = current.get('resourcesVpcConfig') or {}
        for key in ('subnetIds', 'securityGroupIds'):
            if key in desired_vpc and sorted(desired_vpc[key]) != sorted(current_vpc.get(key, [])):
                raise PermanentAPIError(
                    f"EKS cluster {external_id} cannot change resourcesVpcConfig.{key} in place",
                    category=ErrorCategory.VALIDATION,
                    context=self._context(external_id, 'update'),
                    suggestions=['Declare the replacement cluster under a new resource id']
                )

        version = attributes.get('version')
        if version and version != current.get('version'):
            response = self.client.update_cluster_version(name=external_id, version=version)
            logger.info(f"Upgrading EKS cluster {external_id} to {version} "
                        f"(update {response['update']['id']})")
            self._wait('cluster_active', name=external_id)

        # update_cluster_config takes one kind of change per request
        vpc_changes = {
            key: desired_vpc[key] for key in self.MUTABLE_VPC_KEYS
            if key in desired_vpc and desired_vpc[key] != current_vpc.get(key)
        }
        if vpc_changes:
            self.client.update_cluster_config(name=external_id, resourcesVpcConfig=vpc_changes)
            self._wait('cluster_active', name=external_id)

        if 'logging' in attributes:
            self._update_logging(external_id, cluster.get('logging'), attributes['logging'])

        self._sync_tags(cluster.get('arn'), current.get('tags') or {}, attributes)

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_cluster(name=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"EKS cluster {external_id} already deleted")
                return
            raise

        self._wait('cluster_deleted', name=external_id)

    def _describe(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_cluster(name=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        cluster = response['cluster']
        if cluster.get('status') == 'DELETING':
            return None
        return cluster

    @staticmethod
    def _attributes(cluster: Dict[str, Any]) -> Dict[str, Any]:
        vpc = cluster.get('resourcesVpcConfig', {})
        return {
            'name': cluster['name'],
            'version': cluster.get('version'),
            'roleArn': cluster.get('roleArn'),
            'resourcesVpcConfig': {
                'subnetIds': vpc.get('subnetIds', []),
                'securityGroupIds': vpc.get('securityGroupIds', []),
                'endpointPublicAccess': vpc.get('endpointPublicAccess'),
                'endpointPrivateAccess': vpc.get('endpointPrivateAccess'),
            },
            'tags': cluster.get('tags', {}),
        }

    def _update_logging(
        self,
        external_id: str,
        current: Optional[Dict[str, Any]],
        desired: Optional[Dict[str, Any]]
    ) -> None:
        enabled = enabled_log_types(desired)
        active = enabled_log_types(current)
        if enabled == active:
            return

        # Types no longer declared must be switched off explicitly
        setups = []
        if enabled:
            setups.append({'types': sorted(enabled), 'enabled': True})
        if active - enabled:
            setups.append({'types': sorted(active - enabled), 'enabled': False})

        self.client.update_cluster_config(name=external_id, logging={'clusterLogging': setups})
        logger.info(f"Updating control plane logging of EKS cluster {external_id}")
        self._wait('cluster_active', name=external_id)

    def _sync_tags(self, arn: str, current: Dict[str, str], attributes: Dict[str, Any]) -> None:
        desired = tag_dict(tag_list(attributes.get('tags')))
        removed = [key for key in current if key not in desired]
        if removed:
            self.client.untag_resource(resourceArn=arn, tagKeys=removed)

        changed = {k: v for k, v in desired.items() if current.get(k) != v}
        if changed:
            self.client.tag_resource(resourceArn=arn, tags=changed)
