"""EC2 compute host that runs the service container."""
import logging
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_ec2_client
from bike_deploy.utils.decorators import retry

logger = logging.getLogger(__name__)

AMAZON_LINUX_2_NAME = 'amzn2-ami-hvm-*-x86_64-gp2'

USER_DATA_TEMPLATE = """#!/bin/bash
yum update -y
yum install -y docker aws-cli

systemctl start docker
systemctl enable docker
usermod -a -G docker {user}

mkdir -p {uploads_dir}
mkdir -p {logs_dir}
chown {user}:{user} {uploads_dir} {logs_dir}
"""


class InstanceProfileNotReady(Exception):
    """IAM has not propagated the new instance profile to EC2 yet."""


def render_user_data(user: str, uploads_dir: str, logs_dir: str) -> str:
    """Boot script: install Docker and create the persistent directories."""
    return USER_DATA_TEMPLATE.format(user=user, uploads_dir=uploads_dir, logs_dir=logs_dir)


class InstanceHandler(ResourceHandler):
    """Launches the compute host, identified by its Name/Project tags."""

    kind = ResourceKind.INSTANCE

    def __init__(self, ec2_client=None, project: str = "bike-inventory", wait: bool = True):
        self.ec2 = ec2_client or get_ec2_client()
        self.project = project
        self.wait = wait

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        response = self.ec2.describe_instances(
            Filters=[
                {'Name': 'tag:Name', 'Values': [descriptor.name]},
                {'Name': 'tag:Project', 'Values': [self.project]},
                {'Name': 'instance-state-name', 'Values': ['running', 'pending', 'stopping', 'stopped']}
            ]
        )
        instances = [i for r in response['Reservations'] for i in r['Instances']]
        if not instances:
            return None

        # Prefer a live instance over a stopped one
        instances.sort(key=lambda i: i['State']['Name'] not in ('running', 'pending'))
        instance = instances[0]
        if instance['State']['Name'] not in ('running', 'pending'):
            logger.warning(f"⚠️  Instance {instance['InstanceId']} is {instance['State']['Name']}; "
                           "start it from the console before deploying")
        return self._outputs(instance)

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        props = descriptor.properties
        image_id = props.get('ami_id') or self.latest_amazon_linux_ami()

        params = {
            'ImageId': image_id,
            'InstanceType': props.get('instance_type', 't3.micro'),
            'KeyName': props['key_name'],
            'SecurityGroupIds': [props['security_group_id']],
            'IamInstanceProfile': {'Name': props['instance_profile']},
            'UserData': props.get('user_data', ''),
            'MinCount': 1,
            'MaxCount': 1,
            'TagSpecifications': [{
                'ResourceType': 'instance',
                'Tags': [
                    {'Key': 'Name', 'Value': descriptor.name},
                    {'Key': 'Project', 'Value': self.project}
                ]
            }],
        }
        response = self._run_instance(params)
        instance_id = response['Instances'][0]['InstanceId']
        logger.info(f"🖥️ EC2 instance launched: {instance_id}")

        if self.wait:
            logger.info("⏳ Waiting for instance to be running...")
            self.ec2.get_waiter('instance_running').wait(InstanceIds=[instance_id])

        described = self.ec2.describe_instances(InstanceIds=[instance_id])
        return self._outputs(described['Reservations'][0]['Instances'][0])

    @retry(max_attempts=6, delay=5.0, backoff=1.5, exceptions=(InstanceProfileNotReady,))
    def _run_instance(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.ec2.run_instances(**params)
        except ClientError as e:
            message = e.response['Error'].get('Message', '')
            if e.response['Error']['Code'] == 'InvalidParameterValue' and 'iam' in message.lower():
                raise InstanceProfileNotReady(message) from e
            raise

    def latest_amazon_linux_ami(self) -> str:
        """Newest Amazon-owned Amazon Linux 2 image in the region."""
        response = self.ec2.describe_images(
            Owners=['amazon'],
            Filters=[
                {'Name': 'name', 'Values': [AMAZON_LINUX_2_NAME]},
                {'Name': 'state', 'Values': ['available']}
            ]
        )
        images = sorted(response['Images'], key=lambda x: x.get('CreationDate', ''), reverse=True)
        if not images:
            raise ValueError("No Amazon Linux 2 AMI found; set AMI_ID explicitly")
        ami_id = images[0]['ImageId']
        logger.info(f"Using Amazon Linux 2 AMI: {ami_id}")
        return ami_id

    @staticmethod
    def _outputs(instance: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'instance_id': instance['InstanceId'],
            'state': instance['State']['Name'],
            'public_ip': instance.get('PublicIpAddress'),
            'private_ip': instance.get('PrivateIpAddress'),
        }


def instance_descriptor(settings, key_name: str, security_group_id: str,
                        instance_profile: str) -> ResourceDescriptor:
    return ResourceDescriptor(
        kind=ResourceKind.INSTANCE,
        name=settings.instance_name,
        region=settings.aws_region,
        properties={
            'instance_type': settings.instance_type,
            'ami_id': settings.ami_id,
            'key_name': key_name,
            'security_group_id': security_group_id,
            'instance_profile': instance_profile,
            'user_data': render_user_data(settings.ec2_user, settings.uploads_host_dir,
                                          settings.logs_host_dir),
        },
    )
