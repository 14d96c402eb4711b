"""IAM role and instance profile for the compute host."""
import json
import logging
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_iam_client

logger = logging.getLogger(__name__)

EC2_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole"
        }
    ]
}

ECR_READ_ONLY_POLICY = 'arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly'
CLOUDWATCH_AGENT_POLICY = 'arn:aws:iam::aws:policy/CloudWatchAgentServerPolicy'


class RoleHandler(ResourceHandler):
    """EC2 role with read-only registry access, wrapped in an instance profile.

    The role only counts as existing once its instance profile carries it, so
    a run that died between the two calls is completed on the next run.
    """

    kind = ResourceKind.ROLE

    def __init__(self, iam_client=None, project: str = "bike-inventory"):
        self.iam = iam_client or get_iam_client()
        self.project = project

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        profile_name = descriptor.properties['instance_profile']
        try:
            role = self.iam.get_role(RoleName=descriptor.name)['Role']
            profile = self.iam.get_instance_profile(InstanceProfileName=profile_name)['InstanceProfile']
        except ClientError as e:
            if e.response['Error']['Code'] == 'NoSuchEntity':
                return None
            raise

        if descriptor.name not in [r['RoleName'] for r in profile.get('Roles', [])]:
            logger.info(f"Instance profile {profile_name} does not carry role {descriptor.name} yet")
            return None
        return self._outputs(role, profile)

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        profile_name = descriptor.properties['instance_profile']
        policies = descriptor.properties.get('managed_policies', [ECR_READ_ONLY_POLICY])

        try:
            self.iam.create_role(
                RoleName=descriptor.name,
                AssumeRolePolicyDocument=json.dumps(EC2_TRUST_POLICY),
                Description="Role for the bike inventory compute host",
                Tags=[
                    {'Key': 'Name', 'Value': descriptor.name},
                    {'Key': 'Project', 'Value': self.project}
                ]
            )
            logger.info(f"Created IAM role: {descriptor.name}")
        except ClientError as e:
            if e.response['Error']['Code'] != 'EntityAlreadyExists':
                raise

        for policy_arn in policies:
            self.iam.attach_role_policy(RoleName=descriptor.name, PolicyArn=policy_arn)

        try:
            self.iam.create_instance_profile(
                InstanceProfileName=profile_name,
                Tags=[
                    {'Key': 'Name', 'Value': profile_name},
                    {'Key': 'Project', 'Value': self.project}
                ]
            )
            logger.info(f"Created instance profile: {profile_name}")
        except ClientError as e:
            if e.response['Error']['Code'] != 'EntityAlreadyExists':
                raise

        try:
            self.iam.add_role_to_instance_profile(
                InstanceProfileName=profile_name,
                RoleName=descriptor.name
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'LimitExceeded':
                raise

        role = self.iam.get_role(RoleName=descriptor.name)['Role']
        profile = self.iam.get_instance_profile(InstanceProfileName=profile_name)['InstanceProfile']
        return self._outputs(role, profile)

    @staticmethod
    def _outputs(role: Dict[str, Any], profile: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'role_name': role['RoleName'],
            'role_arn': role['Arn'],
            'instance_profile': profile['InstanceProfileName'],
            'instance_profile_arn': profile['Arn'],
        }


def role_descriptor(settings) -> ResourceDescriptor:
    return ResourceDescriptor(
        kind=ResourceKind.ROLE,
        name=settings.iam_role_name,
        region=settings.aws_region,
        properties={
            'instance_profile': settings.iam_instance_profile,
            'managed_policies': [ECR_READ_ONLY_POLICY, CLOUDWATCH_AGENT_POLICY],
        },
    )
