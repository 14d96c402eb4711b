import os

import boto3
import pytest
from moto import mock_aws

from bike_deploy.config.settings import Settings, get_settings
from bike_deploy.state.state_manager import StateManager
from bike_deploy.utils.aws_clients import AWSClientManager
from tests.consts import TEST_ACCOUNT_ID, TEST_DB_PASSWORD, TEST_JWT_SECRET, TEST_REGION

# Variables that would redirect the deployment away from its defaults
DEPLOY_ENV_OVERRIDES = (
    "BIKE_CONTAINER_NAME", "BIKE_HOST_PORT", "BIKE_CONTAINER_PORT", "BIKE_NODE_ENV", "BIKE_STATE_FILE",
    "EC2_HOSTNAME", "EC2_USER", "AMI_ID", "INSTANCE_TYPE",
)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Point every AWS client at fake credentials and the test region."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    monkeypatch.setenv("MOTO_IAM_LOAD_MANAGED_POLICIES", "true")


@pytest.fixture
def mocked_aws(aws_credentials):
    """
    Set up a mocked AWS environment for testing and clean up after the test.
    """
    with mock_aws(config={"iam": {"load_aws_managed_policies": True}}):
        AWSClientManager.reset()
        get_settings.cache_clear()
        yield
        AWSClientManager.reset()
        get_settings.cache_clear()


@pytest.fixture
def settings(aws_credentials, tmp_path, monkeypatch):
    for name in DEPLOY_ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_ACCOUNT_ID", TEST_ACCOUNT_ID)
    monkeypatch.setenv("DEPLOYMENT_MODE", "aws-prod")
    return Settings(
        ssh_key_dir=str(tmp_path / "keys"),
        state_file=str(tmp_path / "state.json"),
        db_password=TEST_DB_PASSWORD,
        jwt_secret=TEST_JWT_SECRET,
        wait_for_database=False,
        _env_file=None,
    )


@pytest.fixture
def state_manager(tmp_path):
    return StateManager(str(tmp_path / "state.json"))


@pytest.fixture
def ec2_client(mocked_aws):
    return boto3.client("ec2", region_name=TEST_REGION)


@pytest.fixture
def amazon_ami_id(ec2_client):
    images = ec2_client.describe_images(Owners=["amazon"])["Images"]
    return images[0]["ImageId"]
