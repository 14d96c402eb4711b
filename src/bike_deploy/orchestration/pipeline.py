"""
Release pipeline: test, publish, deploy, verify.

Stages run strictly in order and pass typed results forward (TestReport,
ArtifactReference, DeployResult, HealthReport). The first failing stage
stops the run; later stages are marked skipped. Nothing is rolled back. A
health timeout leaves the new container running for inspection.
"""
import logging
import time
from typing import Dict, Iterable, Optional

from bike_deploy.build.publisher import ImagePublisher
from bike_deploy.build.test_gate import TestGate
from bike_deploy.errors import ConfigurationError, DeployFailure, DeploymentError
from bike_deploy.models import (
    FULL_PIPELINE,
    ArtifactReference,
    DeploymentTarget,
    PipelineResult,
    PipelineStage,
    StageResult,
    StageStatus,
)
from bike_deploy.monitoring.health import HealthVerifier
from bike_deploy.remote.deployer import RemoteDeployer

logger = logging.getLogger(__name__)


class DeploymentPipeline:
    """Runs the requested stages of one release against one target."""

    def __init__(self, test_gate: TestGate, publisher: Optional[ImagePublisher], deployer: RemoteDeployer,
                 verifier: HealthVerifier, state_manager=None, health_path: str = "/api/health",
                 health_timeout: float = 60.0, health_interval: float = 5.0):
        self.test_gate = test_gate
        self.publisher = publisher
        self.deployer = deployer
        self.verifier = verifier
        self.state_manager = state_manager
        self.health_path = health_path
        self.health_timeout = health_timeout
        self.health_interval = health_interval

    @classmethod
    def from_settings(cls, settings, state_manager=None, runner=None, executor_factory=None,
                      session=None, stages: Iterable[PipelineStage] = FULL_PIPELINE) -> "DeploymentPipeline":
        """Wire a pipeline from settings.

        The publisher needs the registry URI, which may mean an STS call, so it
        is only built when the publish stage is requested.
        """
        from bike_deploy.remote.deployer import ssh_executor_factory
        from bike_deploy.utils.commands import CommandRunner

        secrets = settings.secret_values()
        runner = runner or CommandRunner(secrets=secrets)
        publisher = None
        if PipelineStage.PUBLISH in {PipelineStage(s) for s in stages}:
            publisher = ImagePublisher(settings.ecr_repository_uri, runner=runner)
        return cls(
            test_gate=TestGate(settings.test_command, runner=runner),
            publisher=publisher,
            deployer=RemoteDeployer(
                executor_factory or ssh_executor_factory(settings, secrets=secrets),
                region=settings.aws_region,
                secrets=secrets,
            ),
            verifier=HealthVerifier(session=session,
                                    request_timeout=settings.health_request_timeout,
                                    expected_service=settings.expected_service),
            state_manager=state_manager,
            health_path=settings.health_path,
            health_timeout=settings.health_timeout,
            health_interval=settings.health_interval,
        )

    def run(self, source_tree: str, target: Optional[DeploymentTarget] = None,
            revision: Optional[str] = None, stages: Iterable[PipelineStage] = FULL_PIPELINE,
            environment: Optional[Dict[str, str]] = None,
            artifact: Optional[ArtifactReference] = None) -> PipelineResult:
        """Run the requested stages in pipeline order.

        ``artifact`` lets deploy/verify run without a publish stage in the
        same invocation (redeploying an already published tag).
        """
        requested = {PipelineStage(s) for s in stages}
        result = PipelineResult(revision=revision)
        test_report = None
        failed = False

        for stage in FULL_PIPELINE:
            stage_result = StageResult(stage=stage)
            result.stages.append(stage_result)
            if failed or stage not in requested:
                stage_result.status = StageStatus.SKIPPED
                continue

            logger.info(f"▶️  Stage {stage.value}")
            started = time.monotonic()
            try:
                if stage == PipelineStage.TEST:
                    test_report = self.test_gate.run(source_tree, revision)
                    stage_result.detail = f"'{test_report.command}' passed"

                elif stage == PipelineStage.PUBLISH:
                    if self.publisher is None:
                        raise ConfigurationError("publish stage requested without an image publisher")
                    artifact = self.publisher.publish(source_tree, test_report=test_report,
                                                      revision=revision)
                    result.artifact = artifact
                    result.revision = artifact.tag
                    stage_result.detail = artifact.image_uri

                elif stage == PipelineStage.DEPLOY:
                    target = self._require_target(target)
                    if artifact is None:
                        raise DeployFailure("validate", "no artifact reference to deploy")
                    deployed = self.deployer.deploy(target, artifact, environment)
                    result.artifact = artifact
                    if self.state_manager is not None:
                        self.state_manager.record_deployment(target.host, artifact)
                    stage_result.detail = f"{artifact.tag} on {deployed.host}"

                elif stage == PipelineStage.VERIFY:
                    target = self._require_target(target)
                    report = self.verifier.wait_healthy(target.health_url(self.health_path),
                                                        timeout=self.health_timeout,
                                                        interval=self.health_interval)
                    result.health = report
                    stage_result.detail = f"{report.service} healthy"

                stage_result.status = StageStatus.SUCCEEDED
            except DeploymentError as e:
                stage_result.status = StageStatus.FAILED
                stage_result.detail = str(e)
                result.error = f"{stage.value}: {e}"
                if getattr(e, 'last_report', None) is not None:
                    result.health = e.last_report
                failed = True
                logger.error(f"❌ Stage {stage.value} failed: {e}")
            finally:
                stage_result.duration_seconds = time.monotonic() - started

        result.finish()
        self._record_run(result)
        if result.success:
            logger.info(f"🎉 Pipeline succeeded for revision {result.revision}")
        return result

    @staticmethod
    def _require_target(target: Optional[DeploymentTarget]) -> DeploymentTarget:
        if target is None:
            raise DeployFailure("validate", "no deployment target (set EC2_HOSTNAME)")
        return target

    def _record_run(self, result: PipelineResult) -> None:
        if self.state_manager is None:
            return
        failed_stage = result.failed_stage
        self.state_manager.record_run(
            result.revision,
            "succeeded" if result.success else "failed",
            failed_stage=failed_stage.value if failed_stage else None,
            error=result.error,
        )


def print_pipeline_summary(result: PipelineResult) -> None:
    print("")
    print("📋 Pipeline Summary:")
    for stage in result.stages:
        marker = {
            StageStatus.SUCCEEDED: "✅",
            StageStatus.FAILED: "❌",
            StageStatus.SKIPPED: "⏭️ ",
        }.get(stage.status, "•")
        line = f"  {marker} {stage.stage.value:<8} {stage.status.value}"
        if stage.status != StageStatus.SKIPPED:
            line += f" ({stage.duration_seconds:.1f}s)"
        if stage.detail:
            line += f" - {stage.detail}"
        print(line)
    if result.artifact:
        print(f"  Artifact: {result.artifact.image_uri}")
    print(f"  Result:   {'success' if result.success else 'failed'}")
