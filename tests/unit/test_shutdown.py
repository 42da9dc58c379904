"""
Unit tests for the shutdown coordinator.
"""

import os
import signal
import time
from unittest.mock import MagicMock

import pytest

from nfs_provisioner.cli.lib.exceptions import ShutdownRequested
from nfs_provisioner.cli.lib.shutdown import EXIT_FATAL, ShutdownCoordinator


@pytest.fixture
def server():
    return MagicMock()


class TestShutdown:
    """Tests for ShutdownCoordinator.shutdown."""

    @pytest.mark.unit
    def test_runs_teardown_once(self, server):
        coordinator = ShutdownCoordinator(server)

        assert coordinator.shutdown() is True
        assert coordinator.shutdown() is False

        server.stop.assert_called_once_with()
        assert coordinator.cancel_event.is_set()
        assert coordinator.is_shutting_down

    @pytest.mark.unit
    def test_fatal_exits_non_zero(self, server):
        coordinator = ShutdownCoordinator(server)

        with pytest.raises(SystemExit) as exc_info:
            coordinator.fatal("rpc.mountd failed")

        assert exc_info.value.code == EXIT_FATAL
        server.stop.assert_called_once_with()

    @pytest.mark.unit
    def test_fatal_after_shutdown(self, server):
        coordinator = ShutdownCoordinator(server)
        coordinator.shutdown()

        with pytest.raises(SystemExit):
            coordinator.fatal("late failure")

        server.stop.assert_called_once_with()


class TestSignals:
    """Tests for signal handling."""

    @pytest.mark.unit
    def test_handler_only_records_signal(self, server):
        coordinator = ShutdownCoordinator(server)

        assert coordinator._handle_signal(signal.SIGTERM, None) is None

        assert coordinator.signum == signal.SIGTERM
        assert coordinator.cancel_event.is_set()
        # teardown happens in shutdown()
        server.stop.assert_not_called()

    @pytest.mark.unit
    def test_check_raises_after_signal(self, server):
        coordinator = ShutdownCoordinator(server)
        coordinator.check()

        coordinator._handle_signal(signal.SIGTERM, None)

        with pytest.raises(ShutdownRequested) as exc_info:
            coordinator.check()
        assert exc_info.value.signum == signal.SIGTERM

    @pytest.mark.unit
    def test_check_ignores_programmatic_shutdown(self, server):
        coordinator = ShutdownCoordinator(server)
        coordinator.shutdown()

        coordinator.check()

    @pytest.mark.unit
    def test_second_signal_ignored(self, server):
        coordinator = ShutdownCoordinator(server)
        coordinator.request_shutdown()

        assert coordinator._handle_signal(signal.SIGINT, None) is None

    @pytest.mark.unit
    def test_install_and_restore(self, server):
        previous = signal.getsignal(signal.SIGUSR1)
        coordinator = ShutdownCoordinator(server, signals=(signal.SIGUSR1,))

        coordinator.install()
        try:
            assert signal.getsignal(signal.SIGUSR1) == coordinator._handle_signal
        finally:
            coordinator.restore()

        assert signal.getsignal(signal.SIGUSR1) == previous

    @pytest.mark.unit
    def test_delivered_signal_is_recorded(self, server):
        """Test a real signal lets the main thread carry on until check()."""
        coordinator = ShutdownCoordinator(server, signals=(signal.SIGUSR1,))
        coordinator.install()
        try:
            os.kill(os.getpid(), signal.SIGUSR1)
            deadline = time.monotonic() + 5
            while not coordinator.cancel_event.is_set() and time.monotonic() < deadline:
                time.sleep(0.01)
            finished = True
        finally:
            coordinator.restore()

        assert finished
        assert coordinator.cancel_event.is_set()
        assert coordinator.signum == signal.SIGUSR1
        with pytest.raises(ShutdownRequested):
            coordinator.check()
