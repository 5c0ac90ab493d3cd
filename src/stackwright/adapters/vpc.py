"""VPC and subnet adapters."""

from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.logging import get_logger

from .base import tag_dict
from .ec2 import EC2Adapter

logger = get_logger(__name__)


class VpcAdapter(EC2Adapter):
    """Adapter for VPCs."""

    resource_type = ResourceType.VPC
    ec2_resource_type = 'vpc'
    not_found_codes = ('InvalidVpcID.NotFound',)
    immutable_attributes = ('CidrBlock', 'InstanceTenancy')

    DNS_ATTRIBUTES = ('EnableDnsSupport', 'EnableDnsHostnames')

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = {'CidrBlock': attributes['CidrBlock']}
        if 'InstanceTenancy' in attributes:
            params['InstanceTenancy'] = attributes['InstanceTenancy']
        tag_specs = self.tag_specifications(attributes)
        if tag_specs:
            params['TagSpecifications'] = tag_specs

        response = self.client.create_vpc(**params)
        vpc_id = response['Vpc']['VpcId']
        logger.info(f"Created VPC {vpc_id} ({attributes['CidrBlock']})")
        return vpc_id

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        self._wait('vpc_available', VpcIds=[external_id])
        self._set_dns_attributes(external_id, attributes)

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_vpcs(VpcIds=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        if not response.get('Vpcs'):
            return None

        vpc = response['Vpcs'][0]
        return {
            'CidrBlock': vpc['CidrBlock'],
            'InstanceTenancy': vpc.get('InstanceTenancy', 'default'),
            'Tags': tag_dict(vpc.get('Tags')),
        }

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        current = self.read(external_id)
        self.require_mutable(external_id, current, attributes)

        self._set_dns_attributes(external_id, attributes)
        self.sync_tags(external_id, current.get('Tags', {}), self.declared_tags(attributes))

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_vpc(VpcId=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"VPC {external_id} already deleted")
                return
            raise

    def _set_dns_attributes(self, vpc_id: str, attributes: Dict[str, Any]) -> None:
        # modify_vpc_attribute accepts one attribute per call
        for name in self.DNS_ATTRIBUTES:
            if name in attributes:
                self.client.modify_vpc_attribute(
                    VpcId=vpc_id,
                    **{name: {'Value': bool(attributes[name])}}
                )


class SubnetAdapter(EC2Adapter):
    """Adapter for subnets."""

    resource_type = ResourceType.SUBNET
    ec2_resource_type = 'subnet'
    not_found_codes = ('InvalidSubnetID.NotFound',)
    immutable_attributes = ('VpcId', 'CidrBlock', 'AvailabilityZone')

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = {
            'VpcId': attributes['VpcId'],
            'CidrBlock': attributes['CidrBlock'],
        }
        if 'AvailabilityZone' in attributes:
            params['AvailabilityZone'] = attributes['AvailabilityZone']
        tag_specs = self.tag_specifications(attributes)
        if tag_specs:
            params['TagSpecifications'] = tag_specs

        response = self.client.create_subnet(**params)
        subnet_id = response['Subnet']['SubnetId']
        logger.info(f"Created subnet {subnet_id} in {attributes['VpcId']}")
        return subnet_id

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        self._wait('subnet_available', SubnetIds=[external_id])
        if 'MapPublicIpOnLaunch' in attributes:
            self._set_public_ip(external_id, attributes['MapPublicIpOnLaunch'])

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_subnets(SubnetIds=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        if not response.get('Subnets'):
            return None

        subnet = response['Subnets'][0]
        return {
            'VpcId': subnet['VpcId'],
            'CidrBlock': subnet['CidrBlock'],
            'AvailabilityZone': subnet.get('AvailabilityZone'),
            'MapPublicIpOnLaunch': subnet.get('MapPublicIpOnLaunch', False),
            'Tags': tag_dict(subnet.get('Tags')),
        }

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        current = self.read(external_id)
        self.require_mutable(external_id, current, attributes)

        if 'MapPublicIpOnLaunch' in attributes and \
                bool(attributes['MapPublicIpOnLaunch']) != current.get('MapPublicIpOnLaunch'):
            self._set_public_ip(external_id, attributes['MapPublicIpOnLaunch'])

        self.sync_tags(external_id, current.get('Tags', {}), self.declared_tags(attributes))

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_subnet(SubnetId=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"Subnet {external_id} already deleted")
                return
            raise

    def _set_public_ip(self, subnet_id: str, enabled: Any) -> None:
        self.client.modify_subnet_attribute(
            SubnetId=subnet_id,
            MapPublicIpOnLaunch={'Value': bool(enabled)}
        )
