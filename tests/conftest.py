"""
Pytest configuration and fixtures.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest

from nfs_provisioner.cli.lib.config import ProvisionerConfig
from nfs_provisioner.cli.lib.runner import CommandResult
from nfs_provisioner.cli.lib.server import ExportServer


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external processes")
    config.addinivalue_line("markers", "integration: tests that exercise several modules together")


class FakeRunner:
    """Records commands instead of running them.

    `failures` maps a command-line prefix to the exit status to report for it.
    """

    def __init__(self, failures: Optional[Dict[str, int]] = None):
        self.calls: List[List[str]] = []
        self.failures: Dict[str, int] = dict(failures or {})

    def __call__(self, cmd, timeout=None) -> CommandResult:
        self.calls.append(list(cmd))
        line = " ".join(cmd)
        for prefix, returncode in self.failures.items():
            if line.startswith(prefix):
                return CommandResult(cmd=list(cmd), returncode=returncode, output="boom")
        return CommandResult(cmd=list(cmd), returncode=0)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the host's config, state dir and pod env."""
    monkeypatch.setenv("NFS_PROVISIONER_CONFIG_PATH", str(tmp_path / "missing-provisioner.conf"))
    monkeypatch.delenv("NFS_PROVISIONER_STATE_DIR", raising=False)
    monkeypatch.delenv("POD_IP", raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for testing."""
    with patch("subprocess.run") as mock:
        mock.return_value = MagicMock(returncode=0, stdout="")
        yield mock


@pytest.fixture
def provisioner_config(temp_dir):
    """Config with every path inside a temporary directory."""
    export_root = temp_dir / "export"
    export_root.mkdir()
    return ProvisionerConfig(
        state_dir=temp_dir / "state",
        export_root=str(export_root),
        exports_config=str(temp_dir / "exports"),
        static_manifest=str(temp_dir / "exports.json"),
        server_address="10.0.0.5",
        command_timeout=0,
        resync_period=1,
    )


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def export_server(provisioner_config, fake_runner):
    """ExportServer wired to the fake runner, not started."""
    return ExportServer(provisioner_config, runner=fake_runner)


@pytest.fixture
def running_server(export_server):
    export_server.start()
    export_server.runner.calls.clear()
    return export_server
