import pytest

from bike_deploy.errors import DeployFailure
from bike_deploy.models import ArtifactReference, DeploymentTarget
from bike_deploy.remote.deployer import RemoteDeployer
from tests.consts import TEST_HOST, TEST_JWT_SECRET, TEST_REPOSITORY_URI, TEST_REVISION
from tests.fixtures.fakes import FakeRemoteExecutor

ARTIFACT = ArtifactReference(registry_uri=TEST_REPOSITORY_URI, tag=TEST_REVISION)


@pytest.fixture
def target():
    return DeploymentTarget(
        host=TEST_HOST,
        volume_mounts=[("/home/ec2-user/uploads", "/app/uploads"),
                       ("/home/ec2-user/logs", "/app/logs")],
    )


def deploy_with(executor, target, environment=None, secrets=None):
    deployer = RemoteDeployer(lambda t: executor, secrets=secrets)
    return deployer.deploy(target, ARTIFACT, environment=environment)


def test_first_deploy_with_no_container(target):
    executor = FakeRemoteExecutor(container_running=False)

    result = deploy_with(executor, target)

    assert result.steps == ["connect", "runtime", "login", "teardown", "pull", "run", "prune"]
    assert result.container_id == "3f2a9c1e7b5d"
    assert executor.container_running
    assert executor.closed


def test_commands_run_in_lifecycle_order(target):
    executor = FakeRemoteExecutor(container_running=True)

    deploy_with(executor, target)

    def position(fragment):
        return next(i for i, c in enumerate(executor.commands) if fragment in c)

    assert position("get-login-password") < position("docker stop bike-inventory-app")
    assert position("docker stop") < position("docker rm")
    assert position("docker rm") < position("docker pull")
    assert position("docker pull") < position("docker run")
    assert position("docker run") < position("image prune")


def test_exact_tag_is_pulled_and_run(target):
    executor = FakeRemoteExecutor()

    deploy_with(executor, target)

    assert executor.commands_containing("docker pull") == [f"docker pull {ARTIFACT.image_uri}"]
    run = executor.commands_containing("docker run")[0]
    assert run.endswith(ARTIFACT.image_uri)
    assert ":latest" not in " ".join(executor.commands)


def test_run_command_maps_port_restart_and_volumes(target):
    executor = FakeRemoteExecutor()

    deploy_with(executor, target)

    run = executor.commands_containing("docker run")[0]
    assert run.startswith("mkdir -p /home/ec2-user/uploads /home/ec2-user/logs && ")
    assert "-p 80:3000" in run
    assert "--restart unless-stopped" in run
    assert "--name bike-inventory-app" in run
    assert "-v /home/ec2-user/uploads:/app/uploads" in run
    assert "-v /home/ec2-user/logs:/app/logs" in run


def test_environment_is_passed_and_masked(target):
    executor = FakeRemoteExecutor()

    deploy_with(executor, target, environment={'NODE_ENV': "production", 'JWT_SECRET': TEST_JWT_SECRET},
                secrets=[TEST_JWT_SECRET])

    index = next(i for i, c in enumerate(executor.commands) if "docker run" in c)
    assert "-e NODE_ENV=production" in executor.commands[index]
    assert executor.masks[index] == [TEST_JWT_SECRET]


def test_registry_login_targets_registry_host(target):
    executor = FakeRemoteExecutor()

    RemoteDeployer(lambda t: executor, region="eu-west-1").deploy(target, ARTIFACT)

    login = executor.commands_containing("get-login-password")[0]
    assert "--region eu-west-1" in login
    assert login.endswith(ARTIFACT.registry_host)


def test_pull_failure_is_reported_with_step(target):
    executor = FakeRemoteExecutor(failures={"docker pull": (1, "manifest unknown")})

    with pytest.raises(DeployFailure) as exc_info:
        deploy_with(executor, target)

    assert exc_info.value.step == "pull"
    assert "manifest unknown" in str(exc_info.value)
    assert not executor.commands_containing("docker run")
    assert executor.closed


def test_teardown_failure_other_than_missing_container(target):
    executor = FakeRemoteExecutor(container_running=True,
                                  failures={"docker stop": (1, "permission denied")})

    with pytest.raises(DeployFailure) as exc_info:
        deploy_with(executor, target)

    assert exc_info.value.step == "teardown"


def test_prune_failure_is_only_a_warning(target):
    executor = FakeRemoteExecutor(failures={"image prune": (1, "prune already running")})

    result = deploy_with(executor, target)

    assert "prune" not in result.steps
    assert result.warnings and "prune already running" in result.warnings[0]


def test_runtime_is_installed_when_missing(target):
    executor = FakeRemoteExecutor(docker_installed=False)

    result = deploy_with(executor, target)

    assert result.runtime_installed
    assert executor.commands_containing("sudo yum install -y docker")
    assert executor.commands_containing("sudo docker pull")
    assert executor.commands_containing("| sudo docker login")


def test_connect_error_is_a_deploy_failure(target):
    executor = FakeRemoteExecutor(connect_error=OSError("Connection timed out"))

    with pytest.raises(DeployFailure) as exc_info:
        deploy_with(executor, target)

    assert exc_info.value.step == "connect"
    assert executor.commands == []


def test_unexpected_session_error_is_wrapped(target):
    class DroppedSession(FakeRemoteExecutor):
        def run(self, command, mask=None, timeout=None):
            if "docker pull" in command:
                raise EOFError("session closed by remote host")
            return super().run(command, mask, timeout)

    executor = DroppedSession()

    with pytest.raises(DeployFailure) as exc_info:
        deploy_with(executor, target)

    assert exc_info.value.step == "session"
    assert executor.closed
