"""Local build-and-smoke-test of the service image."""
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

from bike_deploy.errors import BuildFailure
from bike_deploy.models import HealthReport
from bike_deploy.monitoring.health import HealthVerifier
from bike_deploy.utils.commands import CommandRunner
from bike_deploy.utils.decorators import log_operation

logger = logging.getLogger(__name__)

SMOKE_CONTAINER_NAME = "bike-inventory-smoke-test"


class LocalSmokeTest:
    """Builds the image, starts it with its declared mounts, polls health once.

    The container is always removed afterwards. A failed health poll is
    reported, not raised; only a failed build or start is an error.
    """

    def __init__(self, settings, runner: Optional[CommandRunner] = None,
                 verifier: Optional[HealthVerifier] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.runner = runner or CommandRunner(secrets=settings.secret_values())
        self.verifier = verifier or HealthVerifier(request_timeout=settings.health_request_timeout,
                                                   expected_service=settings.expected_service)
        self.sleep = sleep

    @log_operation("Local smoke test", logger_name=__name__)
    def run(self, source_tree: str = ".") -> HealthReport:
        image = f"{self.settings.local_image_name}:local"
        port = self.settings.local_port

        build = self.runner.run(["docker", "build", "-t", image, "."], cwd=source_tree)
        if not build.ok:
            raise BuildFailure(f"docker build exited {build.exit_status}: {build.stderr.strip()[-500:]}")

        root = Path(source_tree).resolve()
        for directory in ("uploads", "logs"):
            (root / directory).mkdir(exist_ok=True)

        args = ["docker", "run", "-d", "--rm", "--name", SMOKE_CONTAINER_NAME,
                "-p", f"{port}:{self.settings.container_port}",
                "-v", f"{root / 'uploads'}:{self.settings.uploads_container_dir}",
                "-v", f"{root / 'logs'}:{self.settings.logs_container_dir}"]
        if os.path.exists(root / ".env"):
            args += ["--env-file", str(root / ".env")]
        args.append(image)

        start = self.runner.run(args)
        if not start.ok:
            raise BuildFailure(f"docker run exited {start.exit_status}: {start.stderr.strip()}")

        try:
            logger.info(f"⏳ Waiting {self.settings.local_startup_wait:.0f}s for the container to start")
            self.sleep(self.settings.local_startup_wait)
            report = self.verifier.check_once(f"http://localhost:{port}{self.settings.health_path}")
            if report.healthy:
                logger.info("✅ Application is running and healthy!")
            else:
                logger.warning(f"⚠️  Health check failed ({report.detail}), but the container started")
            return report
        finally:
            stop = self.runner.run(["docker", "rm", "-f", SMOKE_CONTAINER_NAME])
            if not stop.ok:
                logger.warning(f"Could not remove {SMOKE_CONTAINER_NAME}: {stop.stderr.strip()}")
