"""Failure taxonomy for the provision / publish / deploy / verify pipeline."""
from typing import Optional, Tuple

from botocore.exceptions import ClientError

# ClientError codes that mean "the resource is already there".
ALREADY_EXISTS_CODES = frozenset({
    'RepositoryAlreadyExistsException',
    'InvalidKeyPair.Duplicate',
    'InvalidGroup.Duplicate',
    'InvalidPermission.Duplicate',
    'EntityAlreadyExists',
    'DBInstanceAlreadyExists',
    'DBSubnetGroupAlreadyExists',
    'ResourceAlreadyExistsException',
})


def error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code of a ClientError, None for anything else."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code')
    return None


def is_already_exists(error: Exception) -> bool:
    return error_code(error) in ALREADY_EXISTS_CODES


class DeploymentError(Exception):
    """Base class for every failure that stops a pipeline run."""


class ConfigurationError(DeploymentError):
    """A required setting is missing or invalid."""


class AlreadyExistsError(DeploymentError):
    """Raised by resource handlers when a create call hits an existing resource.

    The provisioner treats this as success.
    """


class TransientInfraError(DeploymentError):
    """A cloud API call failed for a reason other than existence."""

    def __init__(self, identity: Tuple[str, str, str], cause: Exception):
        self.identity = identity
        self.cause = cause
        kind, name, region = identity
        super().__init__(f"{kind} '{name}' in {region}: {cause}")


class TestGateFailure(DeploymentError):
    """The release's test command did not pass."""

    __test__ = False


class BuildFailure(DeploymentError):
    """Building or pushing the container image failed."""


class RegistryAuthError(BuildFailure):
    """The registry authentication handshake failed."""


class DeployFailure(DeploymentError):
    """The remote session or a container lifecycle command failed."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"{step}: {message}")


class HealthTimeout(DeploymentError):
    """The service never reported healthy inside the health window."""

    def __init__(self, url: str, timeout: float, last_report=None, polls: int = 0):
        self.url = url
        self.timeout = timeout
        self.last_report = last_report
        self.polls = polls
        super().__init__(f"{url} not healthy after {timeout:.0f}s ({polls} polls)")
