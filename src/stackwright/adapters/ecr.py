"""ECR repository adapter."""

from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from stackwright.config.models import ResourceType
from stackwright.utils.logging import get_logger

from .base import ResourceAdapter, pick, tag_dict, tag_list

logger = get_logger(__name__)


class ECRRepositoryAdapter(ResourceAdapter):
    """Adapter for ECR repositories. The external id is the repository name."""

    resource_type = ResourceType.ECR_REPOSITORY
    service_name = 'ecr'
    not_found_codes = ('RepositoryNotFoundException',)
    immutable_attributes = ('repositoryName', 'encryptionConfiguration')
    already_exists_codes = ('RepositoryAlreadyExistsException',)
    name_attribute = 'repositoryName'

    SETTINGS = (
        'repositoryName',
        'imageTagMutability',
        'imageScanningConfiguration',
        'encryptionConfiguration',
    )

    def __init__(self, clients, wait: bool = True, force_delete: bool = True):
        """Initialize ECR adapter.

        Args:
            clients: AWS client manager
            wait: Unused, ECR calls are synchronous
            force_delete: Delete repositories that still contain images
        """
        super().__init__(clients, wait=wait)
        self.force_delete = force_delete

    def create(self, attributes: Dict[str, Any], token: Optional[str] = None) -> str:
        params = pick(attributes, self.SETTINGS)
        tags = tag_list(attributes.get('tags'))
        if tags:
            params['tags'] = tags

        response = self.client.create_repository(**params)
        name = response['repository']['repositoryName']
        logger.info(f"Created ECR repository {name}")
        return name

    def read(self, external_id: str) -> Optional[Dict[str, Any]]:
        repo = self._describe(external_id)
        if repo is None:
            return None
        return {key: repo.get(key) for key in self.SETTINGS}

    def update(self, external_id: str, attributes: Dict[str, Any]) -> None:
        repo = self._describe(external_id)
        current = {key: repo.get(key) for key in self.SETTINGS} if repo is not None else None
        self.require_mutable(external_id, current, attributes)

        mutability = attributes.get('imageTagMutability')
        if mutability and mutability != current.get('imageTagMutability'):
            self.client.put_image_tag_mutability(
                repositoryName=external_id,
                imageTagMutability=mutability
            )

        scanning = attributes.get('imageScanningConfiguration')
        if scanning and scanning != current.get('imageScanningConfiguration'):
            self.client.put_image_scanning_configuration(
                repositoryName=external_id,
                imageScanningConfiguration=scanning
            )

        self._sync_tags(repo['repositoryArn'], attributes)

    def delete(self, external_id: str) -> None:
        try:
            self.client.delete_repository(repositoryName=external_id, force=self.force_delete)
        except ClientError as e:
            if self.is_not_found(e):
                logger.debug(f"ECR repository {external_id} already deleted")
                return
            raise

    def _describe(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_repositories(repositoryNames=[external_id])
        except ClientError as e:
            if self.is_not_found(e):
                return None
            raise

        repositories = response.get('repositories') or []
        return repositories[0] if repositories else None

    def _sync_tags(self, arn: str, attributes: Dict[str, Any]) -> None:
        # describe_repositories does not return tags
        current = tag_dict(self.client.list_tags_for_resource(resourceArn=arn).get('tags'))
        desired = tag_dict(tag_list(attributes.get('tags')))

        removed = [key for key in current if key not in desired]
        if removed:
            self.client.untag_resource(resourceArn=arn, tagKeys=removed)

        changed = {k: v for k, v in desired.items() if current.get(k) != v}
        if changed:
            self.client.tag_resource(resourceArn=arn, tags=tag_list(changed))
