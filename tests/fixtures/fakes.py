"""
Test doubles for the collaborators the pipeline talks to: remote hosts,
local commands, HTTP health endpoints and time.
"""
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import requests

from bike_deploy.models import CommandResult
from bike_deploy.remote.executor import RemoteExecutor

NO_SUCH_CONTAINER_ERROR = "Error response from daemon: No such container: {name}"


class FakeRemoteExecutor(RemoteExecutor):
    """Records remote commands and simulates a docker host.

    ``failures`` maps a command substring to (exit_status, stderr) for the
    commands that should fail.
    """

    def __init__(self, container_running: bool = False, docker_installed: bool = True,
                 failures: Optional[Dict[str, Tuple[int, str]]] = None,
                 connect_error: Optional[Exception] = None):
        self.container_running = container_running
        self.container_exists = container_running
        self.docker_installed = docker_installed
        self.failures = failures or {}
        self.connect_error = connect_error
        self.commands: List[str] = []
        self.masks: List[Optional[List[str]]] = []
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def run(self, command: str, mask=None, timeout=None) -> CommandResult:
        self.commands.append(command)
        self.masks.append(mask)

        for fragment, (exit_status, stderr) in self.failures.items():
            if fragment in command:
                return CommandResult(command=command, exit_status=exit_status, stderr=stderr)

        if command == "command -v docker":
            if self.docker_installed:
                return CommandResult(command=command, exit_status=0, stdout="/usr/bin/docker\n")
            return CommandResult(command=command, exit_status=1)

        words = command.split()
        if "docker" in words:
            action = words[words.index("docker") + 1]
            if action in ("stop", "rm"):
                if not self.container_exists:
                    name = words[-1]
                    return CommandResult(command=command, exit_status=1,
                                         stderr=NO_SUCH_CONTAINER_ERROR.format(name=name))
                if action == "rm":
                    self.container_exists = False
                self.container_running = False
                return CommandResult(command=command, exit_status=0, stdout=words[-1])
            if action == "run":
                self.container_exists = True
                self.container_running = True
                return CommandResult(command=command, exit_status=0, stdout="3f2a9c1e7b5d8a6f\n")

        return CommandResult(command=command, exit_status=0)

    def commands_containing(self, fragment: str) -> List[str]:
        return [c for c in self.commands if fragment in c]


class FakeCommandRunner:
    """Stands in for CommandRunner. Responses are keyed by the leading words."""

    def __init__(self, responses: Optional[Dict[str, CommandResult]] = None):
        self.responses = responses or {}
        self.calls: List[dict] = []
        self.secrets: List[str] = []

    def run(self, args, cwd=None, input_text=None, timeout=None) -> CommandResult:
        command = args if isinstance(args, str) else " ".join(args)
        self.calls.append({'command': command, 'args': args, 'cwd': cwd, 'input_text': input_text})
        for prefix, result in self.responses.items():
            if command.startswith(prefix):
                return result
        if command.startswith("git "):
            return CommandResult(command=command, exit_status=128, stderr="fatal: not a git repository")
        return CommandResult(command=command, exit_status=0)

    def commands(self) -> List[str]:
        return [c['command'] for c in self.calls]


class StubResponse:
    def __init__(self, status_code: int = 200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        return json.loads(self._body or "")


def healthy_response(service: str = "bike-inventory-api") -> StubResponse:
    return StubResponse(200, {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": service,
    })


def unhealthy_response() -> StubResponse:
    return StubResponse(503, {"status": "ERROR"})


class StubSession:
    """Returns queued responses in order, repeating the last one.

    A queued exception instance is raised instead of returned. With a
    ``clock``, each request takes ``latency`` seconds of it, or hangs for its
    full timeout when no latency is given.
    """

    def __init__(self, responses, clock=None, latency: Optional[float] = None):
        self.responses = list(responses)
        self.clock = clock
        self.latency = latency
        self.calls: List[Tuple[str, float]] = []
        self.started: List[float] = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.clock is not None:
            self.started.append(self.clock.now)
            self.clock.now += self.latency if self.latency is not None else timeout
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


def connection_refused() -> requests.ConnectionError:
    return requests.ConnectionError("Connection refused")


class FakeClock:
    """Monotonic clock that only advances when sleep is called."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
