"""Shared pytest fixtures for all test modules."""

import asyncio
import os
import subprocess
import sys

import httpx
import pytest

from aiquick.config import DeployParams, Intervals, Timeouts
from aiquick.errors import RemoteCommandError
from aiquick.provisioning.types import Instance, InstanceStatus
from aiquick.readiness.stream import EventKind, ProgressEvent, TerminalMatch


PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the aiquick CLI as a subprocess."""

    def _run(*args, input=None):
        result = subprocess.run(
            [sys.executable, "-m", "aiquick.aiquick", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            input=input,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Fakes ───────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance_to(self, when):
        self.now = max(self.now, when)


class FakeRunCmd:
    """Scripted SSH runner.

    *handlers* maps a command prefix to a callable ``command -> (rc, stdout, stderr)``
    or to a fixed tuple. Unknown commands succeed with empty output.
    """

    def __init__(self, handlers=None):
        self.handlers = handlers or {}
        self.calls = []

    async def __call__(self, command, timeout=60, check=False):
        self.calls.append(command)
        result = (0, "", "")
        for prefix, handler in self.handlers.items():
            if command.startswith(prefix):
                result = handler(command) if callable(handler) else handler
                break
        rc, stdout, stderr = result
        if check and rc != 0:
            raise RemoteCommandError(command, rc, stderr)
        return rc, stdout, stderr


class FakeProvisioner:
    """In-memory InstanceProvisioner."""

    def __init__(self, running_after=0, create_error=None, delete_ok=True, address="203.0.113.10"):
        self.running_after = running_after
        self.create_error = create_error
        self.delete_ok = delete_ok
        self.address = address
        self.created = []
        self.deleted = []

    async def create(self, spec):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(spec)
        return Instance(id="4242", label=spec.label, address=self.address, region=spec.region, instance_type=spec.instance_type)

    async def delete(self, instance_id):
        self.deleted.append(instance_id)
        return self.delete_ok

    async def wait_until_running(self, instance_id, timeout=180, interval=5, clock=None, sleep=None):
        await (sleep or asyncio.sleep)(self.running_after)
        return Instance(id=instance_id, label="", address=self.address, status=InstanceStatus.RUNNING)


class FakeMonitor:
    """Stand-in for ProgressStreamMonitor driven by a FakeClock.

    Offsets are seconds after the subscription opens.
    """

    def __init__(self, clock, first_at=10, terminal_at=200, marker="Starting", first_error=None, install_error=None):
        self.clock = clock
        self.first_at = first_at
        self.terminal_at = terminal_at
        self.marker = marker
        self.first_error = first_error
        self.install_error = install_error
        self.opened_at = None
        self.closed = False

    async def __aenter__(self):
        self.opened_at = self.clock()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def await_first_event(self, timeout=300):
        if self.first_error is not None:
            raise self.first_error
        self.clock.advance_to(self.opened_at + self.first_at)

    async def consume_until_terminal(self, markers=None):
        if self.install_error is not None:
            raise self.install_error
        self.clock.advance_to(self.opened_at + self.terminal_at)
        return TerminalMatch(self.marker, ProgressEvent(EventKind.MESSAGE, f"{self.marker} services..."))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ssh_key(tmp_path):
    """Private/public key pair on disk (contents are placeholders)."""
    key = tmp_path / "id_test"
    key.write_text("PRIVATE")
    (tmp_path / "id_test.pub").write_text("ssh-ed25519 AAAATEST test@host\n")
    return str(key)


@pytest.fixture
def make_params(ssh_key):
    """Return a factory for DeployParams with test-friendly defaults."""

    def _make(**overrides):
        values = dict(
            token="test-token-123456",
            region="us-ord",
            instance_type="g2-gpu-rtx4000a1-s",
            label="ai-quickstart-test",
            ssh_key=ssh_key,
            root_pass="Sup3rSecretRootPass",
            user_data="I2Nsb3VkLWNvbmZpZwo=",
            timeouts=Timeouts(),
            intervals=Intervals(),
        )
        values.update(overrides)
        return DeployParams(**values)

    return _make


def mock_client(handler):
    """httpx.AsyncClient whose requests are answered by *handler*."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
