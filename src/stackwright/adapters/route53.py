"""Route 53 record set adapter."""

from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.errors import PermanentAPIError
from stackwright.utils.logging import get_logger

from .base import ResourceAdapter

logger = get_logger(__name__)


class Route53RecordAdapter(ResourceAdapter):
    """Adapter for a single record set.

    The external id is ``<zone-id>/<name>/<type>``. Creates and updates are
    both UPSERTs; a delete must echo the live record set exactly, so it reads
    the record first.
    """

    resource_type = ResourceType.ROUTE53_RECORD
    service_name = 'route53'
    not_found_codes = ('NoSuchHostedZone',)
    immutable_attributes = ('HostedZoneId', 'Name', 'Type')

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        zone_id = self._zone_id(attributes['HostedZoneId'])
        name = self._fqdn(attributes['Name'])
        record_type = attributes['Type']

        self._change(zone_id, 'UPSERT', self._record_set(attributes))
        logger.info(f"Upserted {record_type} record {name} in zone {zone_id}")
        return f"{zone_id}/{name}/{record_type}"

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        record = self._find(external_id)
        if record is None:
            return None

        zone_id, _, _ = self._split(external_id)
        attributes = {
            'HostedZoneId': zone_id,
            'Name': record['Name'].rstrip('.'),
            'Type': record['Type'],
        }
        if 'TTL' in record:
            attributes['TTL'] = record['TTL']
        if 'ResourceRecords' in record:
            attributes['ResourceRecords'] = [r['Value'] for r in record['ResourceRecords']]
        if 'AliasTarget' in record:
            attributes['AliasTarget'] = record['AliasTarget']
        return attributes

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        zone_id, name, record_type = self._split(external_id)
        if self._fqdn(attributes.get('Name', name)) != name or \
                attributes.get('Type', record_type) != record_type or \
                self._zone_id(attributes.get('HostedZoneId', zone_id)) != zone_id:
            raise PermanentAPIError(
                f"Route 53 record {external_id} cannot change zone, name or type in place",
                context=self._context(external_id, 'update'),
                suggestions=['Declare the new record under a new resource id']
            )

        self._change(zone_id, 'UPSERT', self._record_set(attributes))

    def delete(self, external_id: str) -> None:
        record = self._find(external_id)
        if record is None:
            logger.debug(f"Record {external_id} already deleted")
            return

        zone_id, _, _ = self._split(external_id)
        self._change(zone_id, 'DELETE', record)

    def _find(self, external_id: str) -> Optional[Dict[str, Any]]:
        zone_id, name, record_type = self._split(external_id)
        try:
            response = self.client.list_resource_record_sets(
                HostedZoneId=zone_id,
                StartRecordName=name,
                StartRecordType=record_type,
                MaxItems='1'
            )
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        for record in response.get('ResourceRecordSets', []):
            if self._fqdn(record['Name']) == name and record['Type'] == record_type:
                return record
        return None

    def _change(self, zone_id: str, action: str, record_set: Dict[str, Any]) -> None:
        response = self.client.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={'Changes': [{'Action': action, 'ResourceRecordSet': record_set}]}
        )
        change_id = response['ChangeInfo']['Id']
        self._wait('resource_record_sets_changed', Id=change_id)

    def _record_set(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        record_set = {
            'Name': self._fqdn(attributes['Name']),
            'Type': attributes['Type'],
        }
        if 'AliasTarget' in attributes:
            record_set['AliasTarget'] = attributes['AliasTarget']
        else:
            record_set['TTL'] = int(attributes.get('TTL', 300))
            record_set['ResourceRecords'] = [
                r if isinstance(r, dict) else {'Value': str(r)}
                for r in attributes.get('ResourceRecords', [])
            ]
        return record_set

    def _split(self, external_id: str) -> Tuple[str, str, str]:
        parts = external_id.split('/')
        if len(parts) != 3 or not all(parts):
            raise PermanentAPIError(
                f"Malformed Route 53 record id '{external_id}'",
                context=self._context(external_id, 'parse'),
                suggestions=["Expected '<zone-id>/<name>/<type>'"]
            )
        return parts[0], parts[1], parts[2]

    @staticmethod
    def _zone_id(zone_id: str) -> str:
        # Accept both 'Z123' and '/hostedzone/Z123'
        return zone_id.rsplit('/', 1)[-1]

    @staticmethod
    def _fqdn(name: str) -> str:
        return name if name.endswith('.') else f"{name}."
