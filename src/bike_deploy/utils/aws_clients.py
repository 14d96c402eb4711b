"""AWS client management."""
import os
import boto3
import logging
from typing import Any

from bike_deploy.config.settings import get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Singleton manager for AWS service clients."""
    _instance = None
    _clients = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AWSClientManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize the client manager with settings."""
        self.settings = get_settings()

        self.region = self.settings.aws_region
        self.endpoint_url = self.settings.aws_endpoint_url
        self.mode = self.settings.deployment_mode

        logger.info("Initializing AWSClientManager")
        logger.info(f"  Mode: {self.mode}")
        logger.info(f"  Region: {self.region}")
        if self.endpoint_url:
            logger.info(f"  Endpoint: {self.endpoint_url}")

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {
            'region_name': self.region
        }

        # Named profile (SSO) for operator workstations
        aws_profile = os.environ.get('AWS_PROFILE')
        if aws_profile and self.mode == 'aws-prod':
            session = boto3.Session(profile_name=aws_profile)
            client = session.client(service_name, region_name=self.region)
            self._clients[service_name] = client
            logger.debug(f"Created {service_name} client using profile: {aws_profile}")
            return client

        if self.settings.aws_access_key_id:
            client_kwargs['aws_access_key_id'] = self.settings.aws_access_key_id
        if self.settings.aws_secret_access_key:
            client_kwargs['aws_secret_access_key'] = self.settings.aws_secret_access_key

        # Endpoint override only for local/mock modes (moto server)
        if self.endpoint_url and self.mode in ['local-dev', 'aws-mock']:
            client_kwargs['endpoint_url'] = self.endpoint_url

        try:
            client = boto3.client(service_name, **client_kwargs)
            self._clients[service_name] = client
            logger.debug(f"Created {service_name} client")
            return client
        except Exception as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise

    @classmethod
    def reset(cls):
        """Drop the singleton so the next call re-reads settings."""
        cls._clients.clear()
        cls._instance = None


def get_ec2_client():
    """Get the EC2 client."""
    return AWSClientManager().get_client('ec2')

def get_iam_client():
    """Get the IAM client."""
    return AWSClientManager().get_client('iam')

def get_ecr_client():
    """Get the ECR client."""
    return AWSClientManager().get_client('ecr')

def get_rds_client():
    """Get the RDS client."""
    return AWSClientManager().get_client('rds')

def get_cloudwatch_client():
    """Get the CloudWatch client."""
    return AWSClientManager().get_client('cloudwatch')

def get_logs_client():
    """Get the CloudWatch Logs client."""
    return AWSClientManager().get_client('logs')

def get_sns_client():
    """Get the SNS client."""
    return AWSClientManager().get_client('sns')

def get_sts_client():
    """Get the STS client."""
    return AWSClientManager().get_client('sts')
