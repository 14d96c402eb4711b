"""ECR repository for release images."""
import logging
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_ecr_client

logger = logging.getLogger(__name__)


class RegistryHandler(ResourceHandler):
    """Creates the ECR repository with scan-on-push and AES256 encryption."""

    kind = ResourceKind.REGISTRY

    def __init__(self, ecr_client=None, project: str = "bike-inventory"):
        self.ecr = ecr_client or get_ecr_client()
        self.project = project

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        try:
            response = self.ecr.describe_repositories(repositoryNames=[descriptor.name])
        except ClientError as e:
            if e.response['Error']['Code'] == 'RepositoryNotFoundException':
                return None
            raise
        return self._outputs(response['repositories'][0])

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        response = self.ecr.create_repository(
            repositoryName=descriptor.name,
            imageScanningConfiguration={'scanOnPush': True},
            encryptionConfiguration={'encryptionType': 'AES256'},
            tags=[
                {'Key': 'Project', 'Value': self.project},
                {'Key': 'Purpose', 'Value': 'Container-Registry'}
            ]
        )
        return self._outputs(response['repository'])

    @staticmethod
    def _outputs(repository: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'repository_name': repository['repositoryName'],
            'repository_uri': repository['repositoryUri'],
            'repository_arn': repository['repositoryArn'],
        }


def registry_descriptor(settings) -> ResourceDescriptor:
    return ResourceDescriptor(kind=ResourceKind.REGISTRY, name=settings.ecr_repo_name,
                              region=settings.aws_region)
