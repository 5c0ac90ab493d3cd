"""Security group and security group rule adapters."""

from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.errors import ErrorCategory, PermanentAPIError
from stackwright.utils.logging import get_logger

from .base import tag_dict
from .ec2 import EC2Adapter

logger = get_logger(__name__)


class SecurityGroupAdapter(EC2Adapter):
    """Adapter for security groups. Rules are separate resources."""

    resource_type = ResourceType.SECURITY_GROUP
    ec2_resource_type = 'security-group'
    not_found_codes = ('InvalidGroup.NotFound', 'InvalidGroupId.Malformed')
    immutable_attributes = ('GroupName', 'Description', 'VpcId')
    already_exists_codes = ('InvalidGroup.Duplicate',)

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = {
            'GroupName': attributes['GroupName'],
            'Description': attributes.get('Description', attributes['GroupName']),
        }
        if 'VpcId' in attributes:
            params['VpcId'] = attributes['VpcId']
        tag_specs = self.tag_specifications(attributes)
        if tag_specs:
            params['TagSpecifications'] = tag_specs

        response = self.client.create_security_group(**params)
        group_id = response['GroupId']
        logger.info(f"Created security group {group_id} ({attributes['GroupName']})")
        return group_id

    def find_existing(self, attributes: Dict[str, Any]) -> Optional[str]:
        # Group names are unique per VPC, not per account
        filters = [{'Name': 'group-name', 'Values': [attributes['GroupName']]}]
        if 'VpcId' in attributes:
            filters.append({'Name': 'vpc-id', 'Values': [attributes['VpcId']]})

        groups = self.client.describe_security_groups(Filters=filters).get('SecurityGroups') or []
        return groups[0]['GroupId'] if groups else None

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_security_groups(GroupIds=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        if not response.get('SecurityGroups'):
            return None

        sg = response['SecurityGroups'][0]
        return {
            'GroupName': sg['GroupName'],
            'Description': sg['Description'],
            'VpcId': sg.get('VpcId'),
            'Tags': tag_dict(sg.get('Tags')),
        }

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        current = self.read(external_id)
        self.require_mutable(external_id, current, attributes)
        self.sync_tags(external_id, current.get('Tags', {}), self.declared_tags(attributes))

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_security_group(GroupId=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"Security group {external_id} already deleted")
                return
            raise


class SecurityGroupRuleAdapter(EC2Adapter):
    """Adapter for a single ingress or egress rule.

    External id is ``<group-id>/<rule-id>``; revoking a rule needs both.
    """

    resource_type = ResourceType.SECURITY_GROUP_RULE
    not_found_codes = (
        'InvalidPermission.NotFound',
        'InvalidGroup.NotFound',
        'InvalidSecurityGroupRuleId.NotFound',
    )
    immutable_attributes = (
        'GroupId',
        'Direction',
        'IpProtocol',
        'FromPort',
        'ToPort',
        'CidrIp',
        'SourceSecurityGroupId',
    )

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        group_id = attributes['GroupId']
        direction = self._direction(attributes)
        permission = self._permission(attributes)

        if direction == 'egress':
            response = self.client.authorize_security_group_egress(
                GroupId=group_id, IpPermissions=[permission]
            )
        else:
            response = self.client.authorize_security_group_ingress(
                GroupId=group_id, IpPermissions=[permission]
            )

        rules = response.get('SecurityGroupRules') or []
        if not rules:
            raise PermanentAPIError(
                f"Authorizing {direction} rule on {group_id} returned no rule id",
                context=self._context(group_id, 'create')
            )

        rule_id = rules[0]['SecurityGroupRuleId']
        logger.info(f"Authorized {direction} rule {rule_id} on {group_id}")
        return f"{group_id}/{rule_id}"

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        _, rule_id = self._split(external_id)
        try:
            response = self.client.describe_security_group_rules(SecurityGroupRuleIds=[rule_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        if not response.get('SecurityGroupRules'):
            return None

        rule = response['SecurityGroupRules'][0]
        attributes = {
            'GroupId': rule['GroupId'],
            'Direction': 'egress' if rule.get('IsEgress') else 'ingress',
            'IpProtocol': rule.get('IpProtocol'),
            'FromPort': rule.get('FromPort'),
            'ToPort': rule.get('ToPort'),
        }
        if rule.get('CidrIpv4'):
            attributes['CidrIp'] = rule['CidrIpv4']
        if rule.get('ReferencedGroupInfo', {}).get('GroupId'):
            attributes['SourceSecurityGroupId'] = rule['ReferencedGroupInfo']['GroupId']
        if rule.get('Description'):
            attributes['Description'] = rule['Description']
        return attributes

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        current = self.read(external_id)
        self.require_mutable(external_id, current, attributes)

        description = attributes.get('Description')
        if description == current.get('Description'):
            return

        group_id, rule_id = self._split(external_id)
        rule = {
            'IpProtocol': str(attributes['IpProtocol']),
            'FromPort': attributes.get('FromPort', -1),
            'ToPort': attributes.get('ToPort', -1),
            'Description': description or '',
        }
        if 'CidrIp' in attributes:
            rule['CidrIpv4'] = attributes['CidrIp']
        if 'SourceSecurityGroupId' in attributes:
            rule['ReferencedGroupId'] = attributes['SourceSecurityGroupId']

        self.client.modify_security_group_rules(
            GroupId=group_id,
            SecurityGroupRules=[{'SecurityGroupRuleId': rule_id, 'SecurityGroupRule': rule}]
        )

    def delete(self, external_id: str) -> None:
        group_id, rule_id = self._split(external_id)
        current = self.read(external_id)
        if current is None:
            logger.debug(f"Security group rule {rule_id} already revoked")
            return

        try:
            if current['Direction'] == 'egress':
                self.client.revoke_security_group_egress(
                    GroupId=group_id, SecurityGroupRuleIds=[rule_id]
                )
            else:
                self.client.revoke_security_group_ingress(
                    GroupId=group_id, SecurityGroupRuleIds=[rule_id]
                )
        except ClientError as e:
            if self.is_not_found(e):
                return
            raise

    def _direction(self, attributes: Dict[str, Any]) -> str:
        direction = str(attributes.get('Direction', 'ingress')).lower()
        if direction not in ('ingress', 'egress'):
            raise PermanentAPIError(
                f"Unknown rule direction '{direction}'",
                category=ErrorCategory.VALIDATION,
                suggestions=["Use 'ingress' or 'egress'"]
            )
        return direction

    @staticmethod
    def _permission(attributes: Dict[str, Any]) -> Dict[str, Any]:
        permission = {'IpProtocol': str(attributes['IpProtocol'])}
        if 'FromPort' in attributes:
            permission['FromPort'] = int(attributes['FromPort'])
        if 'ToPort' in attributes:
            permission['ToPort'] = int(attributes['ToPort'])

        description = attributes.get('Description')
        if 'CidrIp' in attributes:
            ip_range = {'CidrIp': attributes['CidrIp']}
            if description:
                ip_range['Description'] = description
            permission['IpRanges'] = [ip_range]
        if 'SourceSecurityGroupId' in attributes:
            pair = {'GroupId': attributes['SourceSecurityGroupId']}
            if description:
                pair['Description'] = description
            permission['UserIdGroupPairs'] = [pair]
        return permission

    def _split(self, external_id: str) -> Tuple[str, str]:
        group_id, sep, rule_id = external_id.partition('/')
        if not sep or not rule_id:
            raise PermanentAPIError(
                f"Malformed security group rule id '{external_id}'",
                context=self._context(external_id, 'parse'),
                suggestions=["Expected '<group-id>/<rule-id>'"]
            )
        return group_id, rule_id
