"""RDS adapters: DB subnet groups and DB instances."""

from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.aws_client import AWSClientManager
from stackwright.utils.logging import get_logger

from .base import ResourceAdapter, pick, tag_dict, tag_list

logger = get_logger(__name__)


class RDSAdapter(ResourceAdapter):
    """Base for adapters backed by the RDS API. RDS tags are addressed by ARN."""

    service_name = 'rds'

    def sync_tags(self, arn: str, current: Dict[str, str], attributes: Dict[str, Any]) -> None:
        """Add, change and remove tags so the resource carries exactly the declared ``Tags``."""
        desired = tag_dict(tag_list(attributes.get('Tags')))

        removed = [key for key in current if key not in desired]
        if removed:
            self.client.remove_tags_from_resource(ResourceName=arn, TagKeys=removed)

        changed = {k: v for k, v in desired.items() if current.get(k) != v}
        if changed:
            self.client.add_tags_to_resource(ResourceName=arn, Tags=tag_list(changed))


class DBSubnetGroupAdapter(RDSAdapter):
    """Adapter for DB subnet groups. The external id is the group name."""

    resource_type = ResourceType.DB_SUBNET_GROUP
    not_found_codes = ('DBSubnetGroupNotFoundFault',)
    immutable_attributes = ('DBSubnetGroupName',)
    already_exists_codes = ('DBSubnetGroupAlreadyExists', 'DBSubnetGroupAlreadyExistsFault')
    name_attribute = 'DBSubnetGroupName'

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        name = attributes['DBSubnetGroupName']
        params = {
            'DBSubnetGroupName': name,
            'DBSubnetGroupDescription': attributes.get('DBSubnetGroupDescription', name),
            'SubnetIds': list(attributes['SubnetIds']),
        }
        tags = tag_list(attributes.get('Tags'))
        if tags:
            params['Tags'] = tags

        self.client.create_db_subnet_group(**params)
        logger.info(f"Created DB subnet group {name}")
        return name

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        group = self._describe(external_id)
        return self._attributes(group) if group is not None else None

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        group = self._describe(external_id)
        self.require_mutable(
            external_id, self._attributes(group) if group is not None else None, attributes
        )

        params = {'DBSubnetGroupName': external_id, 'SubnetIds': list(attributes['SubnetIds'])}
        if 'DBSubnetGroupDescription' in attributes:
            params['DBSubnetGroupDescription'] = attributes['DBSubnetGroupDescription']
        self.client.modify_db_subnet_group(**params)

        # describe_db_subnet_groups does not return tags
        arn = group['DBSubnetGroupArn']
        response = self.client.list_tags_for_resource(ResourceName=arn)
        self.sync_tags(arn, tag_dict(response.get('TagList')), attributes)

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_db_subnet_group(DBSubnetGroupName=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"DB subnet group {external_id} already deleted")
                return
            raise

    def _describe(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_db_subnet_groups(DBSubnetGroupName=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        groups = response.get('DBSubnetGroups') or []
        return groups[0] if groups else None

    @staticmethod
    def _attributes(group: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'DBSubnetGroupName': group['DBSubnetGroupName'],
            'DBSubnetGroupDescription': group.get('DBSubnetGroupDescription'),
            'SubnetIds': sorted(s['SubnetIdentifier'] for s in group.get('Subnets', [])),
        }


class RDSInstanceAdapter(RDSAdapter):
    """Adapter for RDS DB instances. The external id is the instance identifier."""

    resource_type = ResourceType.RDS_INSTANCE
    not_found_codes = ('DBInstanceNotFound', 'DBInstanceNotFoundFault')
    immutable_attributes = ('DBInstanceIdentifier', 'Engine', 'MasterUsername', 'StorageEncrypted')
    already_exists_codes = ('DBInstanceAlreadyExists', 'DBInstanceAlreadyExistsFault')
    name_attribute = 'DBInstanceIdentifier'

    CREATE_PARAMETERS = (
        'DBInstanceIdentifier',
        'DBInstanceClass',
        'Engine',
        'EngineVersion',
        'AllocatedStorage',
        'StorageType',
        'MasterUsername',
        'MasterUserPassword',
        'ManageMasterUserPassword',
        'DBName',
        'DBSubnetGroupName',
        'VpcSecurityGroupIds',
        'MultiAZ',
        'PubliclyAccessible',
        'StorageEncrypted',
        'BackupRetentionPeriod',
        'Port',
    )

    MODIFY_PARAMETERS = (
        'DBInstanceClass',
        'EngineVersion',
        'AllocatedStorage',
        'StorageType',
        'MasterUserPassword',
        'DBSubnetGroupName',
        'VpcSecurityGroupIds',
        'MultiAZ',
        'PubliclyAccessible',
        'BackupRetentionPeriod',
    )

    def __init__(self, clients: AWSClientManager, wait: bool = True, skip_final_snapshot: bool = True):
        """Initialize RDS instance adapter.

        Args:
            clients: AWS client manager
            wait: Block until instances are available or deleted
            skip_final_snapshot: Delete without taking a final snapshot
        """
        super().__init__(clients, wait=wait)
        self.skip_final_snapshot = skip_final_snapshot

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = pick(attributes, self.CREATE_PARAMETERS)
        tags = tag_list(attributes.get('Tags'))
        if tags:
            params['Tags'] = tags

        response = self.client.create_db_instance(**params)
        identifier = response['DBInstance']['DBInstanceIdentifier']
        logger.info(f"Creating DB instance {identifier}")
        return identifier

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        self._wait('db_instance_available', DBInstanceIdentifier=external_id)

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        db = self._describe(external_id)
        return self._attributes(db) if db is not None else None

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        db = self._describe(external_id)
        current = self._attributes(db) if db is not None else None
        self.require_mutable(external_id, current, attributes)

        changes = {
            key: value for key, value in pick(attributes, self.MODIFY_PARAMETERS).items()
            if key == 'MasterUserPassword' or current.get(key) != value
        }
        if changes:
            self.client.modify_db_instance(
                DBInstanceIdentifier=external_id,
                ApplyImmediately=True,
                **changes
            )
            logger.info(f"Modifying DB instance {external_id}: {', '.join(sorted(changes))}")
            self._wait('db_instance_available', DBInstanceIdentifier=external_id)

        self.sync_tags(db.get('DBInstanceArn'), tag_dict(db.get('TagList')), attributes)

    def delete(self, external_id: str) -> None:
        params = {'DBInstanceIdentifier': external_id, 'DeleteAutomatedBackups': True}
        if self.skip_final_snapshot:
            params['SkipFinalSnapshot'] = True
        else:
            params['SkipFinalSnapshot'] = False
            params['FinalDBSnapshotIdentifier'] = f"{external_id}-final"

        try:
            self.client.delete_db_instance(**params)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"DB instance {external_id} already deleted")
                return
            raise

        self._wait('db_instance_deleted', DBInstanceIdentifier=external_id)

    def _describe(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_db_instances(DBInstanceIdentifier=external_id)
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        instances = response.get('DBInstances') or []
        if not instances or instances[0].get('DBInstanceStatus') == 'deleting':
            return None
        return instances[0]

    @staticmethod
    def _attributes(db: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'DBInstanceIdentifier': db['DBInstanceIdentifier'],
            'DBInstanceClass': db.get('DBInstanceClass'),
            'Engine': db.get('Engine'),
            'EngineVersion': db.get('EngineVersion'),
            'AllocatedStorage': db.get('AllocatedStorage'),
            'MasterUsername': db.get('MasterUsername'),
            'DBSubnetGroupName': db.get('DBSubnetGroup', {}).get('DBSubnetGroupName'),
            'VpcSecurityGroupIds': [g['VpcSecurityGroupId'] for g in db.get('VpcSecurityGroups', [])],
            'MultiAZ': db.get('MultiAZ'),
            'PubliclyAccessible': db.get('PubliclyAccessible'),
            'StorageEncrypted': db.get('StorageEncrypted'),
            'BackupRetentionPeriod': db.get('BackupRetentionPeriod'),
        }
