"""
Typed records passed between pipeline stages.

Resources are identified by (kind, name, region). Artifact references are
immutable once published and deployment targets are long-lived handles to
the compute host.
"""
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple


class ResourceKind(str, Enum):
    REGISTRY = "registry"
    KEYPAIR = "keypair"
    SECURITY_GROUP = "securitygroup"
    ROLE = "role"
    INSTANCE = "instance"
    DATABASE = "database"
    LOG_GROUP = "loggroup"
    TOPIC = "topic"
    ALARM = "alarm"
    DASHBOARD = "dashboard"


class ResourceStatus(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    EXISTS = "exists"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class StageStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStage(str, Enum):
    TEST = "test"
    PUBLISH = "publish"
    DEPLOY = "deploy"
    VERIFY = "verify"


FULL_PIPELINE = (PipelineStage.TEST, PipelineStage.PUBLISH,
                 PipelineStage.DEPLOY, PipelineStage.VERIFY)
TEST_ONLY = (PipelineStage.TEST,)


@dataclass(frozen=True)
class ResourceDescriptor:
    """Desired or observed state of one cloud resource.

    ``properties`` are the inputs used when the resource has to be created,
    ``outputs`` are what the cloud reported back (ids, ARNs, addresses).
    """
    kind: ResourceKind
    name: str
    region: str
    status: ResourceStatus = ResourceStatus.PENDING
    properties: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (ResourceKind(self.kind).value, self.name, self.region)

    @property
    def key(self) -> str:
        return "/".join(self.identity)

    def resolved(self, status: ResourceStatus, outputs: Dict[str, Any]) -> "ResourceDescriptor":
        return replace(self, status=status, outputs=dict(outputs))


@dataclass(frozen=True)
class ArtifactReference:
    """A published image, addressed by an immutable tag."""
    registry_uri: str
    tag: str
    digest: Optional[str] = None

    def __post_init__(self):
        if not self.registry_uri:
            raise ValueError("ArtifactReference requires a registry URI")
        if not self.tag or self.tag == "latest":
            raise ValueError(f"ArtifactReference requires an immutable tag, got {self.tag!r}")

    @property
    def image_uri(self) -> str:
        return f"{self.registry_uri}:{self.tag}"

    @property
    def registry_host(self) -> str:
        return self.registry_uri.split('/')[0]

    def to_dict(self) -> Dict[str, Any]:
        return {'registry_uri': self.registry_uri, 'tag': self.tag, 'digest': self.digest}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactReference":
        return cls(registry_uri=data['registry_uri'], tag=data['tag'], digest=data.get('digest'))


@dataclass(frozen=True)
class CredentialsHandle:
    """Where the SSH private key lives. Holds no key material itself."""
    key_path: Optional[str] = None
    key_env_var: Optional[str] = None

    def load_private_key(self) -> str:
        if self.key_env_var and os.environ.get(self.key_env_var):
            return os.environ[self.key_env_var]
        if self.key_path:
            return Path(self.key_path).expanduser().read_text(encoding='utf-8')
        raise ValueError("No SSH private key available for the deployment target")


@dataclass
class DeploymentTarget:
    """The compute host a service instance runs on."""
    host: str
    user: str = "ec2-user"
    credentials: CredentialsHandle = field(default_factory=CredentialsHandle)
    port_mappings: List[Tuple[int, int]] = field(default_factory=lambda: [(80, 3000)])
    volume_mounts: List[Tuple[str, str]] = field(default_factory=list)
    container_name: str = "bike-inventory-app"
    restart_policy: str = "unless-stopped"
    instance_id: Optional[str] = None

    @property
    def external_port(self) -> int:
        return self.port_mappings[0][0]

    def health_url(self, path: str) -> str:
        port = self.external_port
        netloc = self.host if port == 80 else f"{self.host}:{port}"
        return f"http://{netloc}{path}"

    @classmethod
    def from_settings(cls, settings, host: Optional[str] = None,
                      instance_id: Optional[str] = None) -> "DeploymentTarget":
        host = host or settings.ec2_hostname
        if not host:
            raise ValueError("EC2_HOSTNAME is not set and no host was provided")
        credentials = CredentialsHandle(
            key_path=settings.ec2_ssh_key_path,
            key_env_var="EC2_SSH_PRIVATE_KEY",
        )
        return cls(
            host=host,
            user=settings.ec2_user,
            credentials=credentials,
            port_mappings=list(settings.port_mappings),
            volume_mounts=list(settings.volume_mounts),
            container_name=settings.container_name,
            restart_policy=settings.restart_policy,
            instance_id=instance_id,
        )


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    timestamp: str
    service: Optional[str] = None
    http_status: Optional[int] = None
    detail: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


@dataclass(frozen=True)
class AlarmRule:
    """One CloudWatch threshold alarm."""
    name: str
    metric_name: str
    namespace: str
    statistic: str
    period: int
    threshold: float
    evaluation_periods: int
    description: str = ""
    comparison: str = "GreaterThanThreshold"
    notification_target: Optional[str] = None


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a local or remote command."""
    command: str
    exit_status: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass
class StageResult:
    stage: PipelineStage
    status: StageStatus = StageStatus.PENDING
    duration_seconds: float = 0.0
    detail: Optional[str] = None


@dataclass
class PipelineResult:
    revision: Optional[str]
    stages: List[StageResult] = field(default_factory=list)
    artifact: Optional[ArtifactReference] = None
    health: Optional[HealthReport] = None
    error: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and all(
            s.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED) for s in self.stages
        )

    @property
    def failed_stage(self) -> Optional[PipelineStage]:
        for stage in self.stages:
            if stage.status == StageStatus.FAILED:
                return stage.stage
        return None

    def finish(self) -> "PipelineResult":
        self.finished_at = datetime.now(timezone.utc).isoformat()
        return self
