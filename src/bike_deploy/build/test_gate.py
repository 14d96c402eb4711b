"""Test gate: a release is only published after its test command passes."""
import logging
from dataclasses import dataclass
from typing import Optional

from bike_deploy.errors import TestGateFailure
from bike_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestReport:
    """Outcome of one test command run against a source tree."""

    __test__ = False

    command: str
    passed: bool
    exit_status: int
    revision: Optional[str] = None
    output: str = ""


class TestGate:
    __test__ = False

    def __init__(self, command: str = "npm test", runner: Optional[CommandRunner] = None,
                 timeout: Optional[float] = None):
        self.command = command
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    def run(self, source_tree: str, revision: Optional[str] = None) -> TestReport:
        """Run the test command in the source tree.

        Raises:
            TestGateFailure: the command exited non-zero
        """
        logger.info(f"🧪 Running tests: {self.command}")
        result = self.runner.run(self.command, cwd=source_tree, timeout=self.timeout)
        report = TestReport(
            command=self.command,
            passed=result.ok,
            exit_status=result.exit_status,
            revision=revision,
            output=(result.stdout + result.stderr)[-4000:],
        )
        if not report.passed:
            logger.error(f"❌ Tests failed with exit status {result.exit_status}")
            raise TestGateFailure(f"'{self.command}' exited {result.exit_status}: "
                                  f"{result.stderr.strip()[-500:]}")
        logger.info("✅ Tests passed")
        return report
