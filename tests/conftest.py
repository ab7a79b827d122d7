"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest

from vpsm.actionstore import ActionRepository
from vpsm.config import PollSettings
from vpsm.domain.types import ACTION_RUNNING, ActionStatus, Server

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config_dir(tmp_path):
    """Isolated vpsm config directory (holds config.yaml and vpsm.db)."""
    path = tmp_path / "vpsm-config"
    path.mkdir()
    return path


@pytest.fixture
def run_cli(project_root, config_dir):
    """Return a callable that invokes the vpsm CLI as a subprocess.

    The child gets an isolated config directory and no inherited VPSM_* settings.
    """

    def _run(*args, env=None):
        child_env = {k: v for k, v in os.environ.items() if not k.startswith("VPSM_")}
        child_env["VPSM_CONFIG_DIR"] = str(config_dir)
        child_env["PYTHONIOENCODING"] = "utf-8"
        child_env.update(env or {})
        result = subprocess.run(
            [sys.executable, "-m", "vpsm.vpsm", *args],
            capture_output=True,
            encoding="utf-8",
            cwd=project_root,
            env=child_env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Unit-test fixtures ──────────────────────────────────────────────


@pytest.fixture
def repo(tmp_path):
    """A fresh action repository backed by a temp SQLite file."""
    repository = ActionRepository(tmp_path / "actions.db")
    yield repository
    repository.close()


@pytest.fixture
def fast_poll():
    """Poll settings with no interval so state-machine tests run instantly."""
    return PollSettings(interval=0, max_attempts=100, max_transient_errors=3)


class FakeProvider:
    """Scripted provider without action polling.

    ``server_results`` is consumed one entry per ``get_server`` call; each
    entry is a Server, None, or an exception to raise. When it runs out the
    last known state from ``servers`` is returned.
    """

    display_name = "Fake"

    def __init__(self, servers=None):
        self.servers = {s.id: s for s in servers or []}
        self.server_results = []
        self.start_result = ActionStatus(id="a1", status=ACTION_RUNNING, command="start_server")
        self.stop_result = ActionStatus(id="a1", status=ACTION_RUNNING, command="stop_server")
        self.calls = []

    @staticmethod
    def _outcome(value):
        if isinstance(value, Exception):
            raise value
        return value

    async def get_server(self, server_id):
        self.calls.append(("get_server", server_id))
        if self.server_results:
            return self._outcome(self.server_results.pop(0))
        return self.servers.get(server_id)

    async def start_server(self, server_id):
        self.calls.append(("start_server", server_id))
        return self._outcome(self.start_result)

    async def stop_server(self, server_id):
        self.calls.append(("stop_server", server_id))
        return self._outcome(self.stop_result)

    def count(self, name):
        return sum(1 for call, _ in self.calls if call == name)


class FakePoller(FakeProvider):
    """Scripted provider that also supports ``poll_action``."""

    def __init__(self, servers=None):
        super().__init__(servers)
        self.action_results = []

    async def poll_action(self, action_id):
        self.calls.append(("poll_action", action_id))
        return self._outcome(self.action_results.pop(0))


@pytest.fixture
def make_provider():
    """Return a factory for scripted fake providers.

    ``make_provider(poller=True)`` adds the action-polling capability.
    """

    def _make(poller=False, servers=None):
        cls = FakePoller if poller else FakeProvider
        return cls(servers)

    return _make


@pytest.fixture
def make_server():
    def _make(status, server_id="1", name="web-1"):
        return Server(id=server_id, name=name, status=status, provider="fake")

    return _make
