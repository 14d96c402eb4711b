import boto3
import pytest

from bike_deploy.build.publisher import ImagePublisher, content_hash
from bike_deploy.build.test_gate import TestGate, TestReport
from bike_deploy.errors import BuildFailure, RegistryAuthError, TestGateFailure
from bike_deploy.models import ArtifactReference, CommandResult
from tests.consts import TEST_REGION, TEST_REVISION
from tests.fixtures.fakes import FakeCommandRunner

PASSED = TestReport(command="npm test", passed=True, exit_status=0)


@pytest.fixture
def source_tree(tmp_path):
    tree = tmp_path / "app"
    tree.mkdir()
    (tree / "Dockerfile").write_text("FROM node:18-alpine\n")
    (tree / "package.json").write_text('{"name": "bike-inventory"}\n')
    (tree / "node_modules").mkdir()
    (tree / "node_modules" / "ignored.js").write_text("module.exports = 1\n")
    return tree


@pytest.fixture
def repository_uri(mocked_aws):
    ecr = boto3.client("ecr", region_name=TEST_REGION)
    return ecr.create_repository(repositoryName="bike-inventory-app")["repository"]["repositoryUri"]


def make_publisher(repository_uri, runner, skip_existing=False):
    ecr = boto3.client("ecr", region_name=TEST_REGION)
    return ImagePublisher(repository_uri, ecr_client=ecr, runner=runner, skip_existing=skip_existing)


def test_same_revision_publishes_same_tag(repository_uri, source_tree):
    runner = FakeCommandRunner()
    publisher = make_publisher(repository_uri, runner)

    first = publisher.publish(str(source_tree), test_report=PASSED, revision=TEST_REVISION)
    second = publisher.publish(str(source_tree), test_report=PASSED, revision=TEST_REVISION)

    assert first.tag == second.tag == TEST_REVISION
    assert first.image_uri == f"{repository_uri}:{TEST_REVISION}"


def test_build_and_push_use_exact_tag(repository_uri, source_tree):
    runner = FakeCommandRunner()
    make_publisher(repository_uri, runner).publish(str(source_tree), test_report=PASSED,
                                                  revision=TEST_REVISION)

    commands = runner.commands()
    assert any(c.startswith("docker login --username AWS --password-stdin") for c in commands)
    assert f"docker build -t {repository_uri}:{TEST_REVISION} -f Dockerfile ." in commands
    assert f"docker push {repository_uri}:{TEST_REVISION}" in commands
    assert not any(":latest" in c for c in commands)
    login = [c for c in runner.calls if c['command'].startswith("docker login")][0]
    assert login['input_text'] not in login['command']


def test_revision_defaults_to_git_head(repository_uri, source_tree):
    runner = FakeCommandRunner({
        "git rev-parse HEAD": CommandResult(command="git rev-parse HEAD", exit_status=0,
                                            stdout="0f1e2d3c4b5a\n"),
    })

    artifact = make_publisher(repository_uri, runner).publish(str(source_tree), test_report=PASSED)

    assert artifact.tag == "0f1e2d3c4b5a"


def test_revision_falls_back_to_content_hash(repository_uri, source_tree):
    runner = FakeCommandRunner()
    publisher = make_publisher(repository_uri, runner)

    first = publisher.publish(str(source_tree), test_report=PASSED)
    second = publisher.publish(str(source_tree), test_report=PASSED)

    assert first.tag == second.tag == content_hash(str(source_tree))


def test_content_hash_ignores_dependencies(source_tree):
    before = content_hash(str(source_tree))
    (source_tree / "node_modules" / "another.js").write_text("x")
    assert content_hash(str(source_tree)) == before

    (source_tree / "server.js").write_text("console.log('hi')\n")
    assert content_hash(str(source_tree)) != before


def test_publish_requires_passing_tests(repository_uri, source_tree):
    runner = FakeCommandRunner()
    publisher = make_publisher(repository_uri, runner)
    failed = TestReport(command="npm test", passed=False, exit_status=1)

    with pytest.raises(TestGateFailure):
        publisher.publish(str(source_tree), test_report=None, revision=TEST_REVISION)
    with pytest.raises(TestGateFailure):
        publisher.publish(str(source_tree), test_report=failed, revision=TEST_REVISION)
    assert runner.calls == []


def test_build_failure_stops_before_push(repository_uri, source_tree):
    runner = FakeCommandRunner({
        "docker build": CommandResult(command="docker build", exit_status=1, stderr="npm ERR! missing script"),
    })

    with pytest.raises(BuildFailure):
        make_publisher(repository_uri, runner).publish(str(source_tree), test_report=PASSED,
                                                      revision=TEST_REVISION)
    assert not any(c.startswith("docker push") for c in runner.commands())


def test_registry_login_failure_is_fatal(repository_uri, source_tree):
    runner = FakeCommandRunner({
        "docker login": CommandResult(command="docker login", exit_status=1, stderr="unauthorized"),
    })

    with pytest.raises(RegistryAuthError):
        make_publisher(repository_uri, runner).publish(str(source_tree), test_report=PASSED,
                                                      revision=TEST_REVISION)
    assert not any(c.startswith("docker build") for c in runner.commands())


def test_existing_tag_is_not_rebuilt(repository_uri, source_tree, monkeypatch):
    runner = FakeCommandRunner()
    publisher = make_publisher(repository_uri, runner, skip_existing=True)
    monkeypatch.setattr(publisher, "remote_digest", lambda tag: "sha256:" + "a" * 64)

    artifact = publisher.publish(str(source_tree), test_report=PASSED, revision=TEST_REVISION)

    assert artifact.digest == "sha256:" + "a" * 64
    assert not any(c.startswith("docker build") for c in runner.commands())


def test_artifact_reference_rejects_mutable_tags():
    with pytest.raises(ValueError):
        ArtifactReference(registry_uri="example/bike-inventory-app", tag="latest")
    with pytest.raises(ValueError):
        ArtifactReference(registry_uri="example/bike-inventory-app", tag="")


def test_test_gate_runs_command_in_source_tree(source_tree):
    runner = FakeCommandRunner()

    report = TestGate("npm test", runner=runner).run(str(source_tree), TEST_REVISION)

    assert report.passed
    assert runner.calls[0]['cwd'] == str(source_tree)
    assert runner.calls[0]['command'] == "npm test"


def test_test_gate_failure_raises(source_tree):
    runner = FakeCommandRunner({
        "npm test": CommandResult(command="npm test", exit_status=1, stderr="1 failing"),
    })

    with pytest.raises(TestGateFailure):
        TestGate("npm test", runner=runner).run(str(source_tree))


def test_repeated_logins_register_the_registry_password_once(repository_uri, source_tree):
    runner = FakeCommandRunner()
    publisher = make_publisher(repository_uri, runner)

    for _ in range(3):
        publisher.publish(str(source_tree), test_report=PASSED, revision=TEST_REVISION)

    logins = [c for c in runner.calls if c['command'].startswith("docker login")]
    assert len(logins) == 3
    assert runner.secrets == [logins[0]['input_text']]
