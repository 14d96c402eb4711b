"""
Structured remote command execution.

Every remote command returns a CommandResult with its exit status and
captured output instead of being piped through a shell heredoc, so the
deployer can be tested against a fake executor.
"""
import io
import logging
import socket
from typing import List, Optional

import paramiko

from bike_deploy.models import CommandResult, DeploymentTarget
from bike_deploy.utils.decorators import mask_secrets, retry

logger = logging.getLogger(__name__)


class RemoteExecutor:
    """Runs commands on one deployment target."""

    def connect(self) -> None:
        pass

    def run(self, command: str, mask: Optional[List[str]] = None,
            timeout: Optional[float] = None) -> CommandResult:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def load_private_key(private_key_str: str) -> paramiko.PKey:
    """Parse an RSA (EC2 default) or Ed25519 private key."""
    errors = []
    for key_class in (paramiko.RSAKey, paramiko.Ed25519Key):
        try:
            return key_class.from_private_key(io.StringIO(private_key_str))
        except paramiko.SSHException as e:
            errors.append(f"{key_class.__name__}: {e}")
    raise ValueError(f"Unsupported private key format ({'; '.join(errors)})")


class SSHRemoteExecutor(RemoteExecutor):
    """paramiko session to the compute host.

    The private key is read from the target's credentials handle at connect
    time and only held in memory.
    """

    def __init__(self, target: DeploymentTarget, connect_attempts: int = 10,
                 connect_timeout: float = 10.0, command_timeout: Optional[float] = 600.0,
                 secrets: Optional[List[str]] = None):
        self.target = target
        self.connect_attempts = connect_attempts
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.secrets = list(secrets or [])
        self.client = paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    def connect(self) -> None:
        key = load_private_key(self.target.credentials.load_private_key())
        connect = retry(max_attempts=self.connect_attempts, delay=5.0, backoff=1.0,
                        exceptions=(paramiko.SSHException, socket.error),
                        logger_name=__name__)(self._connect_once)
        connect(key)
        logger.info(f"🔌 Connected to {self.target.user}@{self.target.host}")

    def _connect_once(self, key: paramiko.PKey) -> None:
        self.client.connect(
            self.target.host,
            username=self.target.user,
            pkey=key,
            timeout=self.connect_timeout,
            look_for_keys=False,
            allow_agent=False,
        )

    def _is_active(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def run(self, command: str, mask: Optional[List[str]] = None,
            timeout: Optional[float] = None) -> CommandResult:
        if not self._is_active():
            self.connect()

        secrets = self.secrets + list(mask or [])
        display = mask_secrets(command, secrets)
        logger.info(f"[{self.target.host}] $ {display}")

        _, stdout, stderr = self.client.exec_command(command, timeout=timeout or self.command_timeout)
        # Drain output first; a full channel window blocks recv_exit_status
        out = stdout.read().decode('utf-8', errors='replace')
        err = stderr.read().decode('utf-8', errors='replace')
        exit_status = stdout.channel.recv_exit_status()

        return CommandResult(
            command=display,
            exit_status=exit_status,
            stdout=mask_secrets(out, secrets),
            stderr=mask_secrets(err, secrets),
        )

    def close(self) -> None:
        self.client.close()
