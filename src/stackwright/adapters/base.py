"""Base adapter interface for cloud resource types."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.aws_client import AWSClientManager
from stackwright.utils.errors import ErrorCategory, ErrorContext, PermanentAPIError


class ResourceAdapter(ABC):
    """Base class for all resource adapters.

    An adapter translates the four lifecycle operations into calls against
    one cloud service. Attribute names follow the AWS API parameter names so
    declarations read like the API reference.
    """

    resource_type: ResourceType
    service_name: str

    # Error codes meaning the resource is already gone
    not_found_codes: Tuple[str, ...] = ()

    # Attributes that cannot change without replacing the resource
    immutable_attributes: Tuple[str, ...] = ()

    # Error codes meaning a create collided with a resource of the same name
    already_exists_codes: Tuple[str, ...] = ()

    # Attribute naming the resource when the service keys resources by name
    name_attribute: Optional[str] = None

    def __init__(self, clients: AWSClientManager, wait: bool = True):
        """Initialize adapter with a client manager.

        Args:
            clients: AWS client manager providing the service client
            wait: Block on service waiters until resources settle
        """
        self.clients = clients
        self.client = clients.get_client(self.service_name)
        self.wait = wait

    @abstractmethod
    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        """Create the resource and return as soon as it has an identifier.

        Waiting for the resource to become usable belongs in :meth:`settle`,
        which runs once the identifier has been recorded.

        Args:
            attributes: Resolved attributes
            token: Idempotency token, identical for every retry of one create

        Returns:
            External (cloud) identifier of the new resource
        """
        pass

    def settle(self, external_id: str, attributes: Dict[str, Any]) -> None:
        """Wait for a new resource to become usable and apply post-create settings.

        Must be safe to repeat; an apply that finds the creation unconfirmed
        calls it again.
        """
        pass

    @abstractmethod
    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        """Read the live attributes of the resource.

        Args:
            external_id: External identifier

        Returns:
            Attributes in declaration shape, or None if the resource does not exist
        """
        pass

    @abstractmethod
    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        """Bring the resource in line with the given attributes.

        Args:
            external_id: External identifier
            attributes: Resolved desired attributes

        Raises:
            PermanentAPIError: If a change requires replacing the resource
        """
        pass

    @abstractmethod
    def delete(self, external_id: str) -> None:
        """Delete the resource. Deleting an absent resource succeeds.

        Args:
            external_id: External identifier
        """
        pass

    def is_not_found(self, error: ClientError) -> bool:
        """Check if a ClientError means the resource does not exist."""
        return error.response.get('Error', {}).get('Code') in self.not_found_codes

    def is_already_exists(self, error: ClientError) -> bool:
        """Check if a ClientError means the name is already taken."""
        return error.response.get('Error', {}).get('Code') in self.already_exists_codes

    def find_existing(self, attributes: Dict[str, Any]) -> Optional[str]:
        """External id of the live resource carrying the declared name, if any."""
        if self.name_attribute is None or self.name_attribute not in attributes:
            return None

        name = attributes[self.name_attribute]
        current = self.read(name)
        if current is None:
            return None
        return current.get(self.name_attribute) or name

    def require_mutable(
        self,
        external_id: str,
        current: Optional[Dict[str, Any]],
        attributes: Dict[str, Any]
    ) -> None:
        """Fail if an immutable attribute differs from the live resource.

        Raises:
            PermanentAPIError: With a replacement hint
        """
        if current is None:
            raise PermanentAPIError(
                f"{self.resource_type.value} {external_id} no longer exists",
                context=self._context(external_id, 'update'),
                suggestions=['Remove the resource from state or re-create it under a new id']
            )

        changed = [
            key for key in self.immutable_attributes
            if key in attributes and key in current and attributes[key] != current[key]
        ]
        if changed:
            raise PermanentAPIError(
                f"{self.resource_type.value} {external_id} cannot change "
                f"{', '.join(changed)} in place",
                category=ErrorCategory.VALIDATION,
                context=self._context(external_id, 'update'),
                suggestions=[
                    'Declare the replacement under a new resource id and remove the old one'
                ]
            )

    def _context(self, external_id: str, operation: str) -> ErrorContext:
        return ErrorContext(
            resource_type=self.resource_type.value,
            operation=operation,
            aws_service=self.service_name,
            additional_info={'external_id': external_id}
        )

    def _wait(self, waiter_name: str, **kwargs) -> None:
        """Block on a service waiter when waiting is enabled."""
        if self.wait:
            self.client.get_waiter(waiter_name).wait(**kwargs)


def tag_list(tags: Union[Dict[str, str], List[Dict[str, str]], None]) -> List[Dict[str, str]]:
    """Normalize tags into the ``[{'Key': ..., 'Value': ...}]`` form."""
    if not tags:
        return []
    if isinstance(tags, dict):
        return [{'Key': str(k), 'Value': str(v)} for k, v in tags.items()]
    return list(tags)


def tag_dict(tags: Optional[Iterable[Dict[str, str]]]) -> Dict[str, str]:
    """Convert ``[{'Key': ..., 'Value': ...}]`` tags into a plain dict."""
    return {tag['Key']: tag['Value'] for tag in tags or []}


def pick(attributes: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Subset of attributes restricted to the given keys."""
    return {key: attributes[key] for key in keys if key in attributes}
