"""Local command execution (docker, git, test runners)."""
import logging
import shlex
import subprocess
from typing import List, Optional, Sequence, Union

from bike_deploy.models import CommandResult
from bike_deploy.utils.decorators import mask_secrets

logger = logging.getLogger(__name__)


class CommandRunner:
    """Runs local commands and returns a CommandResult instead of raising."""

    def __init__(self, secrets: Optional[Sequence[str]] = None):
        self.secrets = list(secrets or [])

    def run(self, args: Union[str, List[str]], cwd: Optional[str] = None,
            input_text: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        if isinstance(args, str):
            args = shlex.split(args)
        display = mask_secrets(" ".join(args), self.secrets)
        logger.info(f"$ {display}")

        try:
            completed = subprocess.run(
                args,
                cwd=cwd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            return CommandResult(command=display, exit_status=127, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            return CommandResult(command=display, exit_status=124,
                                 stderr=f"timed out after {e.timeout}s")

        result = CommandResult(
            command=display,
            exit_status=completed.returncode,
            stdout=completed.stdout or "",
            stderr=mask_secrets(completed.stderr or "", self.secrets),
        )
        if not result.ok:
            logger.debug(f"Command exited {result.exit_status}: {result.stderr.strip()}")
        return result
