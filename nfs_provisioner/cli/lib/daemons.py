"""
NFS server daemon handles.

Each daemon the kernel NFS server needs is described by a DaemonHandle; the
registry keeps them in dependency order so startup can walk it forwards and
teardown backwards.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from nfs_provisioner.cli.lib.config import NFS_VERSIONS, ProvisionerConfig
from nfs_provisioner.cli.lib.exceptions import CommandFailed, DaemonStartError
from nfs_provisioner.cli.lib.runner import CommandResult, describe_failure, run_command

LOG = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]


@dataclass(frozen=True)
class DaemonHandle:
    """
    One NFS server component.

    Attributes:
        name: Display name (e.g., "rpc.mountd")
        start_cmd: Command that starts the daemon and returns
        stop_cmd: Command that stops it, if it needs stopping
        probe_cmd: Command that succeeds when the daemon is already running
        required: Whether startup fails when this daemon fails to start
        drain_on_stop: Stop this daemon before the export table is flushed
    """

    name: str
    start_cmd: List[str]
    stop_cmd: Optional[List[str]] = None
    probe_cmd: Optional[List[str]] = None
    required: bool = True
    drain_on_stop: bool = False

    def status(self, runner: Runner = run_command, timeout: Optional[float] = None) -> Optional[bool]:
        """Return True/False from the probe command, None if there is none."""
        if not self.probe_cmd:
            return None
        return runner(self.probe_cmd, timeout=timeout).ok

    def start(self, runner: Runner = run_command, timeout: Optional[float] = None) -> bool:
        """
        Start the daemon unless its probe says it is already running.

        Returns:
            True if started or already running, False if an optional daemon failed

        Raises:
            DaemonStartError: If a required daemon fails to start
        """
        if self.status(runner, timeout):
            LOG.info("%s is already running", self.name)
            return True

        LOG.info("Starting %s", self.name)
        result = runner(self.start_cmd, timeout=timeout)
        if result.ok:
            return True

        details = describe_failure(result)
        if self.required:
            raise DaemonStartError(daemon=self.name, details=details)
        LOG.warning("Starting optional daemon %s failed: %s", self.name, details)
        return False

    def stop(self, runner: Runner = run_command, timeout: Optional[float] = None) -> None:
        """
        Stop the daemon. A handle without a stop command is left alone.

        Raises:
            CommandFailed: If the stop command fails
        """
        if not self.stop_cmd:
            return
        LOG.info("Stopping %s", self.name)
        result = runner(self.stop_cmd, timeout=timeout)
        if not result.ok:
            raise CommandFailed(description=f"Stopping {self.name}", details=describe_failure(result))


class DaemonRegistry:
    """Ordered collection of daemon handles."""

    def __init__(self, handles: List[DaemonHandle]):
        names = [h.name for h in handles]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate daemon names: {names}")
        self._handles = list(handles)

    def __iter__(self) -> Iterator[DaemonHandle]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, name: str) -> Optional[DaemonHandle]:
        for handle in self._handles:
            if handle.name == name:
                return handle
        return None

    def names(self) -> List[str]:
        return [h.name for h in self._handles]

    def drain_handles(self) -> List[DaemonHandle]:
        return [h for h in self._handles if h.drain_on_stop]

    def teardown_handles(self) -> List[DaemonHandle]:
        """Handles stopped after the export table flush, in reverse start order."""
        return [h for h in reversed(self._handles) if not h.drain_on_stop]


def version_flags(enabled: List[str]) -> List[str]:
    """
    Render NFS protocol version flags for rpc.mountd and rpc.nfsd.

    >>> version_flags(["3"])
    ['-N2', '-V3', '-N4', '-N4.1']
    """
    return [f"-V{v}" if v in enabled else f"-N{v}" for v in NFS_VERSIONS]


def build_default_registry(cfg: ProvisionerConfig) -> DaemonRegistry:
    """
    Build the kernel NFS server daemon set in startup order.
    """
    flags = version_flags(cfg.enabled_versions)
    return DaemonRegistry(
        [
            DaemonHandle(
                name="rpcbind",
                probe_cmd=["/usr/sbin/rpcinfo", "127.0.0.1"],
                start_cmd=["/usr/sbin/rpcbind", "-w"],
            ),
            DaemonHandle(
                name="nfsd-fs",
                start_cmd=["mount", "-t", "nfsd", "nfsd", cfg.nfsd_mount_point],
                stop_cmd=["umount", cfg.nfsd_mount_point],
            ),
            DaemonHandle(
                name="rpc.mountd",
                start_cmd=["/usr/sbin/rpc.mountd", *flags],
                stop_cmd=["pkill", "-x", "rpc.mountd"],
            ),
            DaemonHandle(
                name="rpc.nfsd",
                # -G sets the grace period; 10 seconds is the lowest allowed
                start_cmd=["/usr/sbin/rpc.nfsd", f"-G{cfg.grace_period}", *flags, str(cfg.nfsd_threads)],
                # zero threads stops serving without killing in-flight requests
                stop_cmd=["/usr/sbin/rpc.nfsd", "0"],
                drain_on_stop=True,
            ),
            DaemonHandle(
                name="rpc.statd",
                # fresh environment on every start, nothing to notify
                start_cmd=["/usr/sbin/rpc.statd", "--no-notify"],
            ),
        ]
    )
