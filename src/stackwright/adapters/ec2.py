"""EC2 instance adapter and shared EC2 helpers."""

from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.logging import get_logger

from .base import ResourceAdapter, pick, tag_dict, tag_list

logger = get_logger(__name__)


class EC2Adapter(ResourceAdapter):
    """Base for adapters backed by the EC2 API."""

    service_name = 'ec2'

    # TagSpecifications resource type for create calls
    ec2_resource_type: str = ''

    def tag_specifications(self, attributes: Dict[str, Any]):
        tags = tag_list(attributes.get('Tags'))
        if not tags:
            return []
        return [{'ResourceType': self.ec2_resource_type, 'Tags': tags}]

    def declared_tags(self, attributes: Dict[str, Any]) -> Dict[str, str]:
        """Declared ``Tags`` as a plain dict, whichever form they were given in."""
        return tag_dict(tag_list(attributes.get('Tags')))

    def sync_tags(self, external_id: str, current: Dict[str, str], desired: Dict[str, str]) -> None:
        """Add, change and remove tags so the resource carries exactly ``desired``."""
        removed = [key for key in current if key not in desired]
        if removed:
            self.client.delete_tags(Resources=[external_id], Tags=[{'Key': key} for key in removed])

        changed = {k: v for k, v in desired.items() if current.get(k) != str(v)}
        if changed:
            self.client.create_tags(Resources=[external_id], Tags=tag_list(changed))


class EC2InstanceAdapter(EC2Adapter):
    """Adapter for single EC2 instances (e.g. the migration server)."""

    resource_type = ResourceType.EC2_INSTANCE
    ec2_resource_type = 'instance'
    not_found_codes = ('InvalidInstanceID.NotFound', 'InvalidInstanceID.Malformed')
    immutable_attributes = ('ImageId', 'InstanceType', 'SubnetId', 'KeyName', 'UserData')

    CREATE_PARAMETERS = (
        'ImageId',
        'InstanceType',
        'SubnetId',
        'SecurityGroupIds',
        'KeyName',
        'UserData',
        'IamInstanceProfile',
        'BlockDeviceMappings',
        'PrivateIpAddress',
        'Monitoring',
    )

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = pick(attributes, self.CREATE_PARAMETERS)
        tag_specs = self.tag_specifications(attributes)
        if tag_specs:
            params['TagSpecifications'] = tag_specs
        if token:
            # A repeated ClientToken returns the original reservation
            params['ClientToken'] = token[:64]

        response = self.client.run_instances(MinCount=1, MaxCount=1, **params)
        instance_id = response['Instances'][0]['InstanceId']
        logger.info(f"Launched instance {instance_id}")
        return instance_id

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        self._wait('instance_running', InstanceIds=[external_id])

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_instances(InstanceIds=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        instances = [i for r in response.get('Reservations', []) for i in r.get('Instances', [])]
        if not instances:
            return None

        instance = instances[0]
        if instance.get('State', {}).get('Name') in ('shutting-down', 'terminated'):
            return None

        attributes = {
            'ImageId': instance.get('ImageId'),
            'InstanceType': instance.get('InstanceType'),
            'SubnetId': instance.get('SubnetId'),
            'SecurityGroupIds': [g['GroupId'] for g in instance.get('SecurityGroups', [])],
            'Tags': tag_dict(instance.get('Tags')),
        }
        if instance.get('KeyName'):
            attributes['KeyName'] = instance['KeyName']
        return attributes

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        current = self.read(external_id)
        self.require_mutable(external_id, current, attributes)

        if 'SecurityGroupIds' in attributes and \
                sorted(attributes['SecurityGroupIds']) != sorted(current.get('SecurityGroupIds', [])):
            self.client.modify_instance_attribute(
                InstanceId=external_id,
                Groups=attributes['SecurityGroupIds']
            )

        self.sync_tags(external_id, current.get('Tags', {}), self.declared_tags(attributes))

    def delete(self, external_id: str) -> None:
        try:
            self.client.terminate_instances(InstanceIds=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"Instance {external_id} already terminated")
                return
            raise

        self._wait('instance_terminated', InstanceIds=[external_id])
