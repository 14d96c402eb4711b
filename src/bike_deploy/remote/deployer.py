"""
Remote deployer: swap the running service container for a new artifact.

The sequence is connect, ensure runtime, registry login, teardown, pull, run,
prune. It is not transactional. A failure after teardown leaves the service
down until the next run, whose teardown/pull/run converges again.
"""
import logging
import shlex
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from bike_deploy.errors import DeployFailure
from bike_deploy.models import ArtifactReference, CommandResult, DeploymentTarget
from bike_deploy.remote.executor import RemoteExecutor, SSHRemoteExecutor
from bike_deploy.utils.decorators import log_operation

logger = logging.getLogger(__name__)

NO_SUCH_CONTAINER = "no such container"


@dataclass
class DeployResult:
    host: str
    artifact: ArtifactReference
    container_id: Optional[str] = None
    runtime_installed: bool = False
    steps: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def ssh_executor_factory(settings, secrets: Optional[List[str]] = None) -> Callable[[DeploymentTarget], RemoteExecutor]:
    def factory(target: DeploymentTarget) -> RemoteExecutor:
        return SSHRemoteExecutor(
            target,
            connect_attempts=settings.ssh_connect_attempts,
            connect_timeout=settings.ssh_connect_timeout,
            command_timeout=settings.remote_command_timeout,
            secrets=secrets,
        )
    return factory


class RemoteDeployer:
    """Places an artifact on a deployment target over a remote session."""

    def __init__(self, executor_factory: Callable[[DeploymentTarget], RemoteExecutor],
                 region: str = "us-east-1", secrets: Optional[List[str]] = None):
        self.executor_factory = executor_factory
        self.region = region
        self.secrets = list(secrets or [])

    @log_operation("Remote deploy", logger_name=__name__)
    def deploy(self, target: DeploymentTarget, artifact: ArtifactReference,
               environment: Optional[Dict[str, str]] = None) -> DeployResult:
        """Replace the container on the target with ``artifact``.

        Raises:
            DeployFailure: the session or a container lifecycle command failed
        """
        if artifact is None:
            raise DeployFailure("validate", "no artifact reference to deploy")
        environment = environment or {}
        result = DeployResult(host=target.host, artifact=artifact)
        logger.info(f"🚀 Deploying {artifact.image_uri} to {target.user}@{target.host}")

        try:
            executor = self.executor_factory(target)
            executor.connect()
        except DeployFailure:
            raise
        except Exception as e:
            raise DeployFailure("connect", f"could not open a session to {target.host}: {e}") from e
        result.steps.append("connect")

        try:
            docker = self._ensure_runtime(executor, target, result)
            self._registry_login(executor, docker, artifact)
            result.steps.append("login")
            self._teardown(executor, docker, target.container_name)
            result.steps.append("teardown")
            self._check(executor.run(f"{docker} pull {shlex.quote(artifact.image_uri)}"), "pull")
            result.steps.append("pull")
            run = self._check(
                executor.run(self._run_command(docker, target, artifact, environment),
                             mask=self.secrets),
                "run",
            )
            result.container_id = run.stdout.strip()[:12] or None
            result.steps.append("run")
            self._prune(executor, docker, result)
        except DeployFailure:
            raise
        except Exception as e:
            raise DeployFailure("session", f"remote session to {target.host} failed: {e}") from e
        finally:
            executor.close()

        logger.info(f"✅ {target.container_name} running {artifact.tag} on {target.host}")
        return result

    def _ensure_runtime(self, executor: RemoteExecutor, target: DeploymentTarget,
                        result: DeployResult) -> str:
        if executor.run("command -v docker").ok:
            result.steps.append("runtime")
            return "docker"

        logger.info("🐳 Docker not found on host, installing")
        install = (
            "sudo yum install -y docker && "
            "sudo systemctl start docker && "
            "sudo systemctl enable docker && "
            f"sudo usermod -a -G docker {shlex.quote(target.user)}"
        )
        self._check(executor.run(install), "runtime")
        result.runtime_installed = True
        result.steps.append("runtime")
        # Group membership only applies to new sessions
        return "sudo docker"

    def _registry_login(self, executor: RemoteExecutor, docker: str,
                        artifact: ArtifactReference) -> None:
        command = (
            f"aws ecr get-login-password --region {shlex.quote(self.region)} | "
            f"{docker} login --username AWS --password-stdin {shlex.quote(artifact.registry_host)}"
        )
        self._check(executor.run(command), "login")

    def _teardown(self, executor: RemoteExecutor, docker: str, name: str) -> None:
        """Stop and remove the previous container; a missing one is fine."""
        for action in ("stop", "rm"):
            outcome = executor.run(f"{docker} {action} {shlex.quote(name)}")
            if outcome.ok:
                continue
            if NO_SUCH_CONTAINER in (outcome.stderr + outcome.stdout).lower():
                logger.info(f"No existing container '{name}' to {action}")
                continue
            raise DeployFailure("teardown", f"docker {action} {name} exited {outcome.exit_status}: "
                                            f"{outcome.stderr.strip()}")

    def _run_command(self, docker: str, target: DeploymentTarget, artifact: ArtifactReference,
                     environment: Dict[str, str]) -> str:
        parts = [docker, "run", "-d",
                 "--name", shlex.quote(target.container_name),
                 "--restart", shlex.quote(target.restart_policy)]
        for host_port, container_port in target.port_mappings:
            parts += ["-p", f"{host_port}:{container_port}"]
        for key, value in environment.items():
            parts += ["-e", shlex.quote(f"{key}={value}")]
        for host_dir, container_dir in target.volume_mounts:
            parts += ["-v", shlex.quote(f"{host_dir}:{container_dir}")]
        parts.append(shlex.quote(artifact.image_uri))

        if target.volume_mounts:
            mkdir = "mkdir -p " + " ".join(shlex.quote(h) for h, _ in target.volume_mounts)
            return f"{mkdir} && {' '.join(parts)}"
        return " ".join(parts)

    def _prune(self, executor: RemoteExecutor, docker: str, result: DeployResult) -> None:
        outcome = executor.run(f"{docker} image prune -af")
        if outcome.ok:
            result.steps.append("prune")
            return
        warning = f"image prune exited {outcome.exit_status}: {outcome.stderr.strip()}"
        logger.warning(f"⚠️  {warning}")
        result.warnings.append(warning)

    @staticmethod
    def _check(outcome: CommandResult, step: str) -> CommandResult:
        if not outcome.ok:
            raise DeployFailure(step, f"'{outcome.command}' exited {outcome.exit_status}: "
                                      f"{outcome.stderr.strip()}")
        return outcome
