"""
SSH key pair for the compute host.

The private key is written once, at creation time, to the local key
directory with owner read-only permissions. Its material is never logged.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_ec2_client

logger = logging.getLogger(__name__)


class KeyPairHandler(ResourceHandler):
    """Manage the EC2 key pair used for deploy sessions."""

    kind = ResourceKind.KEYPAIR

    def __init__(self, ec2_client=None, key_dir: str = "~/.ssh", project: str = "bike-inventory"):
        self.ec2 = ec2_client or get_ec2_client()
        self.key_dir = Path(key_dir).expanduser()
        self.project = project

    def private_key_path(self, key_name: str) -> Path:
        return self.key_dir / f"{key_name}.pem"

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        try:
            response = self.ec2.describe_key_pairs(KeyNames=[descriptor.name])
        except ClientError as e:
            if e.response['Error']['Code'] == 'InvalidKeyPair.NotFound':
                return None
            raise
        if not response['KeyPairs']:
            return None

        key_info = response['KeyPairs'][0]
        key_path = self.private_key_path(descriptor.name)
        if not key_path.exists():
            logger.warning(f"⚠️  Key pair '{descriptor.name}' exists in AWS but private key not found locally")
            logger.warning(f"Expected location: {key_path}")
        return {
            'key_name': key_info['KeyName'],
            'fingerprint': key_info.get('KeyFingerprint'),
            'private_key_path': str(key_path) if key_path.exists() else None,
        }

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        response = self.ec2.create_key_pair(
            KeyName=descriptor.name,
            KeyType='rsa',
            TagSpecifications=[
                {
                    'ResourceType': 'key-pair',
                    'Tags': [
                        {'Key': 'Name', 'Value': descriptor.name},
                        {'Key': 'Project', 'Value': self.project},
                        {'Key': 'Purpose', 'Value': 'deploy-ssh-access'}
                    ]
                }
            ]
        )
        key_path = self._save_private_key(descriptor.name, response['KeyMaterial'])
        return {
            'key_name': response['KeyName'],
            'fingerprint': response.get('KeyFingerprint'),
            'private_key_path': str(key_path),
        }

    def _save_private_key(self, key_name: str, private_key_material: str) -> Path:
        """Save private key to local filesystem with proper permissions."""
        self.key_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        key_path = self.private_key_path(key_name)
        if key_path.exists():
            # Stale file from an older pair with the same name
            os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)

        try:
            with open(key_path, 'w', encoding='utf-8') as f:
                f.write(private_key_material)
            os.chmod(key_path, stat.S_IRUSR)
        except OSError:
            if key_path.exists():
                key_path.unlink()
            raise

        logger.info(f"🔑 Private key saved to: {key_path} (permissions 400)")
        return key_path


def get_ssh_connection_command(private_key_path: str, host: str, username: str = "ec2-user") -> str:
    """Generate SSH connection command for an instance."""
    return f"ssh -i {private_key_path} {username}@{host}"


def keypair_descriptor(settings) -> ResourceDescriptor:
    return ResourceDescriptor(kind=ResourceKind.KEYPAIR, name=settings.key_pair_name,
                              region=settings.aws_region)
