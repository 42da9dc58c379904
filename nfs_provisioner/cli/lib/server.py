"""
Kernel NFS server lifecycle and export table ownership.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from nfs_provisioner.cli.lib.config import ProvisionerConfig, get_state_dir
from nfs_provisioner.cli.lib.daemons import DaemonRegistry, Runner, build_default_registry
from nfs_provisioner.cli.lib.exceptions import CommandFailed, ExportError, ExportServerNotRunning
from nfs_provisioner.cli.lib.exports import AccessRule, ExportEntry, ExportTable
from nfs_provisioner.cli.lib.runner import describe_failure, run_command

LOG = logging.getLogger(__name__)

EXPORTFS = "/usr/sbin/exportfs"


class ExportServer:
    """
    Brings the kernel NFS server up and down and owns its export table.

    Every export change goes through add_export/remove_export so that the
    persisted table, the exports file and the kernel table stay in step.
    """

    def __init__(
        self,
        cfg: ProvisionerConfig,
        table: Optional[ExportTable] = None,
        registry: Optional[DaemonRegistry] = None,
        runner: Runner = run_command,
    ):
        self.cfg = cfg
        self.table = table or ExportTable(
            state_file=get_state_dir(cfg) / "exports.json",
            config_path=Path(cfg.exports_config),
        )
        self.registry = registry or build_default_registry(cfg)
        self.runner = runner
        self.timeout = cfg.command_timeout or None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, checkpoint: Optional[Callable[[], None]] = None) -> None:
        """
        Start every daemon in order, then re-export the persisted table.

        Args:
            checkpoint: Called before each step; raising from it abandons
                startup without interrupting a step already running

        Raises:
            DaemonStartError: If a required daemon fails to start
            CommandFailed: If re-exporting the persisted table fails
        """
        LOG.info("Starting NFS")
        for handle in self.registry:
            if checkpoint:
                checkpoint()
            handle.start(self.runner, self.timeout)
        if checkpoint:
            checkpoint()

        with self._lock:
            for entry in self.table.entries():
                if not Path(entry.path).is_dir():
                    LOG.warning("Dropping persisted export %s: directory no longer exists", entry.path)
                    self.table.remove(entry.path)
            entries = self.table.entries()
            if entries:
                LOG.info("Restoring %d persisted exports", len(entries))
            self.table.write_config()
            self._exportfs(["-ra"], "exportfs -ra")
            self._running = True
        LOG.info("NFS started")

    def stop(self) -> List[str]:
        """
        Tear the NFS server down. Every step runs even if an earlier one fails.

        Returns:
            Names of the steps that failed
        """
        LOG.info("Stopping NFS")
        self._running = False
        failed: List[str] = []

        def _step(name: str, fn) -> None:
            try:
                fn()
            except Exception as e:
                LOG.error("%s failed: %s", name, e)
                failed.append(name)

        with self._lock:
            for handle in self.registry.drain_handles():
                _step(f"stop {handle.name}", lambda h=handle: h.stop(self.runner, self.timeout))
            _step("exportfs -au", lambda: self._exportfs(["-au"], "exportfs -au"))
            _step("exportfs -f", lambda: self._exportfs(["-f"], "exportfs -f"))
            for handle in self.registry.teardown_handles():
                _step(f"stop {handle.name}", lambda h=handle: h.stop(self.runner, self.timeout))
            _step(f"clean {self.table.config_path}", self.table.clear_config)

        if failed:
            LOG.warning("Stopped NFS with %d failed steps: %s", len(failed), ", ".join(failed))
        else:
            LOG.info("Stopped NFS")
        return failed

    def add_export(self, path: str, rule: AccessRule, claim_uid: str = "") -> ExportEntry:
        """
        Export a directory. Idempotent for the same path and claim.

        Raises:
            ExportServerNotRunning: If the server is not running
            ExportError: If the path is invalid or exported for another claim
            CommandFailed: If the kernel table could not be refreshed
        """
        with self._lock:
            if not self._running:
                raise ExportServerNotRunning(path=path)
            if not Path(path).is_dir():
                raise ExportError(path=path, details="directory does not exist")
            previous = self.table.get(path)
            entry, created = self.table.add(path, rule, claim_uid=claim_uid)
            if created:
                try:
                    self._sync()
                except CommandFailed:
                    self._rollback(path, previous)
                    raise
                LOG.info("Exported %s to %s", path, entry.rule.render())
            return entry

    def remove_export(self, path: str) -> Optional[ExportEntry]:
        """
        Unexport a directory. Removing an unknown path is a no-op.

        Raises:
            ExportServerNotRunning: If the server is not running
            CommandFailed: If the kernel table could not be refreshed
        """
        with self._lock:
            if not self._running:
                raise ExportServerNotRunning(path=path)
            entry = self.table.remove(path)
            if entry is not None:
                try:
                    self._sync()
                except CommandFailed:
                    self._rollback(path, entry)
                    raise
                LOG.info("Unexported %s", path)
            return entry

    def exports(self) -> List[ExportEntry]:
        with self._lock:
            return self.table.entries()

    def status(self) -> Dict[str, Optional[bool]]:
        return {handle.name: handle.status(self.runner, self.timeout) for handle in self.registry}

    def _rollback(self, path: str, previous: Optional[ExportEntry]) -> None:
        # keep the persisted table in line with what the kernel last accepted
        if previous is None:
            self.table.remove(path)
        else:
            self.table.restore(previous)
        try:
            self.table.write_config()
        except OSError as e:
            LOG.error("Rewriting %s after failed export update failed: %s", self.table.config_path, e)

    def _sync(self) -> None:
        self.table.write_config()
        self._exportfs(["-r"], "exportfs -r")

    def _exportfs(self, args: List[str], description: str) -> None:
        result = self.runner([EXPORTFS, *args], timeout=self.timeout)
        if not result.ok:
            raise CommandFailed(description=description, details=describe_failure(result))
