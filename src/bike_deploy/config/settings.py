# src/bike_deploy/config/settings.py
import os
from typing import Optional, Dict, List, Tuple
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Single source of truth for all deployment settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from bike_deploy.config.settings import get_settings
        settings = get_settings()
        repo_name = settings.ecr_repo_name
    """

    # Application Settings
    app_name: str = Field(
        default="bike-inventory",
        description="Project name used for tagging resources"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected if not provided)"
    )

    # ECR Configuration
    ecr_repo_name: str = Field(
        default="bike-inventory-app",
        description="ECR repository name"
    )

    # Network / access
    key_pair_name: str = Field(default="bike-inventory-keypair")
    ssh_key_dir: str = Field(
        default="~/.ssh",
        description="Where newly created key pair private keys are saved"
    )
    security_group_name: str = Field(default="bike-inventory-sg")
    ingress_ports: str = Field(
        default="22,80,443",
        description="Comma separated TCP ports open on the compute perimeter"
    )

    # IAM Configuration
    iam_role_name: str = Field(default="BikeInventoryEC2Role")
    iam_instance_profile: str = Field(default="BikeInventoryEC2Profile")

    # Compute Configuration
    instance_name: str = Field(default="BikeInventoryApp")
    instance_type: str = Field(default="t3.micro")
    ami_id: Optional[str] = Field(
        default=None,
        description="Explicit AMI id; latest Amazon Linux 2 is looked up when unset"
    )

    # Database Configuration
    db_instance_identifier: str = Field(default="bike-inventory-db")
    db_security_group_name: str = Field(default="bike-inventory-db-sg")
    db_subnet_group_name: str = Field(default="bike-inventory-subnet-group")
    db_name: str = Field(default="bike_inventory")
    db_username: str = Field(default="admin")
    db_password: Optional[str] = Field(default=None)
    db_instance_class: str = Field(default="db.t3.micro")
    db_engine_version: str = Field(default="8.0")
    db_allocated_storage: int = Field(default=20)
    db_backup_retention_days: int = Field(default=7)
    db_port: int = Field(default=3306)
    wait_for_database: bool = Field(
        default=True,
        description="Block until the database reports available"
    )

    # Monitoring Configuration
    log_group_name: str = Field(default="/aws/ec2/bike-inventory")
    log_retention_days: int = Field(default=30)
    alert_topic_name: str = Field(default="bike-inventory-alerts")
    alarm_prefix: str = Field(default="BikeInventory")
    dashboard_name: str = Field(default="BikeInventoryApp")

    # Remote host
    ec2_hostname: Optional[str] = Field(default=None)
    ec2_user: str = Field(default="ec2-user")
    ec2_ssh_private_key: Optional[str] = Field(
        default=None,
        description="Private key material (CI secret)"
    )
    ec2_ssh_key_path: Optional[str] = Field(default=None)
    ssh_connect_attempts: int = Field(default=10)
    ssh_connect_timeout: int = Field(default=10)
    remote_command_timeout: int = Field(default=600)

    # Container runtime on the host
    container_name: str = Field(default="bike-inventory-app", alias="BIKE_CONTAINER_NAME")
    host_port: int = Field(default=80, alias="BIKE_HOST_PORT")
    container_port: int = Field(default=3000, alias="BIKE_CONTAINER_PORT")
    uploads_host_dir: str = Field(default="/home/ec2-user/uploads")
    uploads_container_dir: str = Field(default="/app/uploads")
    logs_host_dir: str = Field(default="/home/ec2-user/logs")
    logs_container_dir: str = Field(default="/app/logs")
    restart_policy: str = Field(default="unless-stopped")

    # Runtime values handed to the service (opaque to the pipeline)
    node_env: str = Field(default="production", alias="BIKE_NODE_ENV")
    db_host: Optional[str] = Field(default=None)
    db_user: Optional[str] = Field(default=None)
    jwt_secret: Optional[str] = Field(default=None)
    session_secret: Optional[str] = Field(default=None)
    app_log_level: str = Field(default="info")
    upload_path: str = Field(default="/app/uploads")
    max_file_size: Optional[str] = Field(default="10485760")

    # Health verification
    health_path: str = Field(default="/api/health")
    health_timeout: float = Field(default=60.0)
    health_interval: float = Field(default=5.0)
    health_request_timeout: float = Field(default=5.0)
    expected_service: str = Field(default="bike-inventory-api")

    # Pipeline
    test_command: str = Field(
        default="npm test",
        description="Command that must pass before an image is published"
    )
    deploy_branch: str = Field(default="main")
    state_file: str = Field(default=".deployment_state.json", alias="BIKE_STATE_FILE")

    # Local smoke test
    local_image_name: str = Field(default="bike-inventory-app")
    local_port: int = Field(default=3000)
    local_startup_wait: float = Field(default=10.0)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @validator('deployment_mode', pre=True)
    def normalize_deployment_mode(cls, v):
        """Normalize deployment mode values for backwards compatibility."""
        if v:
            mode_mapping = {
                "local-mock": "local-dev",
                "cloud": "aws-prod",
                "prod": "aws-prod",
            }
            return mode_mapping.get(v, v)
        return v

    @validator('deployment_mode')
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @property
    def ingress_port_list(self) -> List[int]:
        return [int(port) for port in self.ingress_ports.split(',') if port.strip()]

    @property
    def account_id(self) -> str:
        """Get AWS account ID, asking STS when it was not configured."""
        if self.aws_account_id:
            return self.aws_account_id

        from bike_deploy.utils.aws_clients import get_sts_client
        return get_sts_client().get_caller_identity()['Account']

    @property
    def ecr_registry(self) -> str:
        """Get ECR registry host."""
        return f"{self.account_id}.dkr.ecr.{self.aws_region}.amazonaws.com"

    @property
    def ecr_repository_uri(self) -> str:
        return f"{self.ecr_registry}/{self.ecr_repo_name}"

    @property
    def port_mappings(self) -> List[Tuple[int, int]]:
        return [(self.host_port, self.container_port)]

    @property
    def volume_mounts(self) -> List[Tuple[str, str]]:
        return [
            (self.uploads_host_dir, self.uploads_container_dir),
            (self.logs_host_dir, self.logs_container_dir),
        ]

    def runtime_environment(self) -> Dict[str, str]:
        """Key-value pairs injected into the service container.

        Empty values are left out so the service falls back to its own defaults.
        """
        env_vars = {
            'NODE_ENV': self.node_env,
            'PORT': str(self.container_port),
            'DB_HOST': self.db_host,
            'DB_USER': self.db_user or self.db_username,
            'DB_PASSWORD': self.db_password,
            'DB_NAME': self.db_name,
            'JWT_SECRET': self.jwt_secret,
            'SESSION_SECRET': self.session_secret,
            'LOG_LEVEL': self.app_log_level,
            'UPLOAD_PATH': self.upload_path,
            'MAX_FILE_SIZE': self.max_file_size,
        }
        return {key: str(value) for key, value in env_vars.items() if value}

    def secret_values(self) -> List[str]:
        """Values that must never appear in logs."""
        candidates = [
            self.db_password,
            self.jwt_secret,
            self.session_secret,
            self.aws_secret_access_key,
        ]
        return [value for value in candidates if value]

    def export_environment_variables(self) -> None:
        """Export AWS connection settings for child processes (docker, git)."""
        env_vars = {
            'AWS_DEFAULT_REGION': self.aws_region,
            'DEPLOYMENT_MODE': self.deployment_mode,
        }
        if self.deployment_mode in ['local-dev', 'aws-mock'] and self.aws_endpoint_url:
            env_vars['AWS_ENDPOINT_URL'] = self.aws_endpoint_url

        for key, value in env_vars.items():
            if value:
                os.environ[key] = str(value)

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.local-dev", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
