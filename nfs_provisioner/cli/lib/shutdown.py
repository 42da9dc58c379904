"""
Shutdown coordination for the NFS server.

Termination signals, fatal startup errors and normal exit all end in the same
place: the server teardown, run once, followed by exit status 1.
"""

import logging
import signal
import sys
import threading
import types
from typing import Any, Callable, Dict, NoReturn, Optional, Sequence, Union

from nfs_provisioner.cli.lib.exceptions import ShutdownRequested
from nfs_provisioner.cli.lib.server import ExportServer

LOG = logging.getLogger(__name__)

EXIT_FATAL = 1

SignalHandlerType = Union[Callable[[int, Optional[types.FrameType]], Any], int, None]


class ShutdownCoordinator:
    """Runs ExportServer.stop() exactly once, whatever triggers it."""

    def __init__(self, server: ExportServer, signals: Sequence[int] = (signal.SIGINT, signal.SIGTERM)):
        self.server = server
        self.signals = tuple(signals)
        self.cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._shutting_down = False
        self._stopped = False
        self.signum: Optional[int] = None
        self._original_handlers: Dict[int, SignalHandlerType] = {}

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def install(self) -> None:
        """
        Install signal handlers. Must be called from the main thread.
        """
        for sig in self.signals:
            self._original_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)

    def restore(self) -> None:
        """Restore the signal handlers that were active before install()."""
        for sig, handler in self._original_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)
        self._original_handlers = {}

    def _handle_signal(self, sig_num: int, frame: Optional[types.FrameType]) -> None:
        # only record the request; the main thread unwinds in check()
        sig_name = signal.Signals(sig_num).name
        if self._shutting_down:
            LOG.warning("Received %s while already shutting down, ignoring", sig_name)
            return
        LOG.info("Received %s, shutting down", sig_name)
        self.signum = sig_num
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Mark shutdown as started and cancel the reconciliation loop."""
        # flag first: a signal arriving inside Event.set() must see it
        self._shutting_down = True
        self.cancel_event.set()

    def check(self) -> None:
        """
        Unwind the main thread if a signal was received.

        Called between startup steps and after the reconciler returns.

        Raises:
            ShutdownRequested: If a termination signal was received
        """
        if self.signum is not None:
            raise ShutdownRequested(self.signum)

    def shutdown(self) -> bool:
        """
        Tear the server down unless that already happened.

        Returns:
            True if this call ran the teardown
        """
        self.request_shutdown()
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
        self.server.stop()
        return True

    def fatal(self, reason: str) -> NoReturn:
        """Log a fatal error, tear down and exit non-zero. Never returns."""
        LOG.error("%s", reason)
        self.shutdown()
        sys.exit(EXIT_FATAL)
