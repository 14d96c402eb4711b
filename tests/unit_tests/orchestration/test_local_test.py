import pytest

from bike_deploy.errors import BuildFailure
from bike_deploy.models import CommandResult
from bike_deploy.monitoring.health import HealthVerifier
from bike_deploy.orchestration.local_test import SMOKE_CONTAINER_NAME, LocalSmokeTest
from tests.consts import TEST_SERVICE_NAME
from tests.fixtures.fakes import FakeClock, FakeCommandRunner, StubSession, healthy_response, unhealthy_response


def smoke_test(settings, runner, responses):
    clock = FakeClock()
    session = StubSession(responses)
    verifier = HealthVerifier(session=session, clock=clock, sleep=clock.sleep,
                              expected_service=TEST_SERVICE_NAME)
    return LocalSmokeTest(settings, runner=runner, verifier=verifier, sleep=clock.sleep), session, clock


def test_healthy_container_is_removed_afterwards(settings, tmp_path):
    runner = FakeCommandRunner()
    smoke, session, clock = smoke_test(settings, runner, [healthy_response()])

    report = smoke.run(str(tmp_path))

    assert report.healthy
    assert session.calls[0][0] == "http://localhost:3000/api/health"
    assert clock.sleeps == [10.0]
    commands = runner.commands()
    assert commands[0] == "docker build -t bike-inventory-app:local ."
    assert "-p 3000:3000" in commands[1]
    assert f"{tmp_path.resolve() / 'uploads'}:/app/uploads" in commands[1]
    assert commands[-1] == f"docker rm -f {SMOKE_CONTAINER_NAME}"
    assert (tmp_path / "uploads").is_dir() and (tmp_path / "logs").is_dir()


def test_unhealthy_container_is_reported_not_raised(settings, tmp_path):
    runner = FakeCommandRunner()
    smoke, _, _ = smoke_test(settings, runner, [unhealthy_response()])

    report = smoke.run(str(tmp_path))

    assert not report.healthy
    assert runner.commands()[-1] == f"docker rm -f {SMOKE_CONTAINER_NAME}"


def test_env_file_is_passed_when_present(settings, tmp_path):
    (tmp_path / ".env").write_text("NODE_ENV=development\n")
    runner = FakeCommandRunner()
    smoke, _, _ = smoke_test(settings, runner, [healthy_response()])

    smoke.run(str(tmp_path))

    assert f"--env-file {tmp_path.resolve() / '.env'}" in runner.commands()[1]


def test_build_failure_raises(settings, tmp_path):
    runner = FakeCommandRunner({
        "docker build": CommandResult(command="docker build", exit_status=1, stderr="no Dockerfile"),
    })
    smoke, session, _ = smoke_test(settings, runner, [healthy_response()])

    with pytest.raises(BuildFailure):
        smoke.run(str(tmp_path))
    assert session.calls == []
