"""
Dynamic provisioning controller.

Level-triggered: every pass lists all claims and converges the export table
and PersistentVolumes to them. Passes run on claim events and at least every
resync period.
"""

import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from kubernetes import client

from nfs_provisioner.cli.lib.config import ProvisionerConfig, resolve_server_address
from nfs_provisioner.cli.lib.exceptions import ExportServerNotRunning
from nfs_provisioner.cli.lib.exports import AccessRule, ExportEntry
from nfs_provisioner.cli.lib.kube import ANN_STORAGE_CLASS, ClusterClient, build_nfs_volume
from nfs_provisioner.cli.lib.server import ExportServer

LOG = logging.getLogger(__name__)

VOLUME_PREFIX = "pvc-"
EXPORT_DIR_MODE = 0o777
CANCEL_POLL_INTERVAL = 0.5


class Cancelled(Exception):
    """The reconciliation pass was cancelled."""


@dataclass
class ReconcileResult:
    provisioned: int = 0
    deleted: int = 0
    failed: int = 0
    aborted: bool = False


def volume_name(claim_uid: str) -> str:
    return f"{VOLUME_PREFIX}{claim_uid}"


def claim_key(claim: client.V1PersistentVolumeClaim) -> str:
    return f"{claim.metadata.namespace}/{claim.metadata.name}"


def claim_class(claim: client.V1PersistentVolumeClaim) -> str:
    annotations = claim.metadata.annotations or {}
    if annotations.get(ANN_STORAGE_CLASS):
        return annotations[ANN_STORAGE_CLASS]
    return (claim.spec and claim.spec.storage_class_name) or ""


class ProvisionController:
    def __init__(
        self,
        cluster: ClusterClient,
        server: ExportServer,
        provisioner: str,
        cfg: ProvisionerConfig,
        server_address: Optional[str] = None,
    ):
        self.cluster = cluster
        self.server = server
        self.provisioner = provisioner
        self.cfg = cfg
        self.export_root = Path(cfg.export_root)
        self.server_address = server_address or resolve_server_address(cfg)
        self.access_rule = AccessRule.parse(f"{cfg.export_clients}({cfg.export_options})")
        self._cancel = threading.Event()
        self._wake = threading.Event()

    def export_path(self, claim_uid: str) -> Path:
        return self.export_root / volume_name(claim_uid)

    def run(self, cancel_event: threading.Event) -> None:
        """
        Reconcile until cancel_event is set.
        """
        self._cancel = cancel_event
        watcher = threading.Thread(
            target=self.cluster.watch_claims,
            args=(self._on_claim_event, cancel_event, self.cfg.watch_timeout),
            name="claim-watch",
            daemon=True,
        )
        watcher.start()
        LOG.info("Provisioner %s watching claims (resync every %ds)", self.provisioner, self.cfg.resync_period)

        while not cancel_event.is_set():
            self._wake.clear()
            self.reconcile()
            self._idle(cancel_event)

        LOG.info("Provisioning controller stopped")

    def _idle(self, cancel_event: threading.Event) -> None:
        # the signal handler sets cancel_event on the main thread, so never block on it
        deadline = time.monotonic() + self.cfg.resync_period
        while not cancel_event.is_set() and not self._wake.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._wake.wait(min(remaining, CANCEL_POLL_INTERVAL))

    def _on_claim_event(self, event_type: str, claim: object) -> None:
        LOG.debug("Claim event %s", event_type)
        self._wake.set()

    def reconcile(self) -> ReconcileResult:
        """Run one reconciliation pass."""
        result = ReconcileResult()
        try:
            claims = self.cluster.list_claims()
        except Exception as e:
            LOG.error("Listing claims failed, skipping pass: %s", e)
            result.aborted = True
            return result

        live = {claim.metadata.uid for claim in claims}
        try:
            served = self._served_claims(claims)
        except Exception as e:
            LOG.error("Reading storage classes failed, skipping pass: %s", e)
            result.aborted = True
            return result

        try:
            for uid, claim in served.items():
                self._check_cancelled()
                try:
                    if self._provision(claim):
                        result.provisioned += 1
                except ExportServerNotRunning:
                    raise Cancelled()
                except Exception as e:
                    LOG.error("Provisioning volume for claim %s failed: %s", claim_key(claim), e)
                    result.failed += 1

            # only a claim that no longer exists releases its export; a claim whose
            # class is missing or changed keeps its data
            for entry in self.server.exports():
                if entry.is_static or entry.claim_uid in live:
                    continue
                self._check_cancelled()
                try:
                    self._delete(entry)
                    result.deleted += 1
                except ExportServerNotRunning:
                    raise Cancelled()
                except Exception as e:
                    LOG.error("Deleting export %s for claim %s failed: %s", entry.path, entry.claim_uid, e)
                    result.failed += 1
        except Cancelled:
            LOG.info("Reconciliation cancelled")
            result.aborted = True

        return result

    def _check_cancelled(self) -> None:
        if self._cancel.is_set() or not self.server.running:
            raise Cancelled()

    def _served_claims(self, claims) -> Dict[str, client.V1PersistentVolumeClaim]:
        provisioners: Dict[str, Optional[str]] = {}
        served: Dict[str, client.V1PersistentVolumeClaim] = {}
        for claim in claims:
            class_name = claim_class(claim)
            if not class_name:
                continue
            if class_name not in provisioners:
                storage_class = self.cluster.get_storage_class(class_name)
                provisioners[class_name] = storage_class.provisioner if storage_class else None
            if provisioners[class_name] != self.provisioner:
                continue

            uid = claim.metadata.uid
            bound_to = claim.spec.volume_name if claim.spec else None
            if bound_to and bound_to != volume_name(uid):
                # pre-bound or bound to a volume someone else provided
                continue
            served[uid] = claim
        return served

    def _provision(self, claim: client.V1PersistentVolumeClaim) -> bool:
        """
        Ensure the export and volume for a claim exist.

        Returns:
            True if a volume was created in this pass
        """
        uid = claim.metadata.uid
        path = self.export_path(uid)
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, EXPORT_DIR_MODE)
        self.server.add_export(str(path), self.access_rule, claim_uid=uid)

        if claim.spec.volume_name:
            return False

        requests = (claim.spec.resources and claim.spec.resources.requests) or {}
        volume = build_nfs_volume(
            name=volume_name(uid),
            server=self.server_address,
            path=str(path),
            capacity=requests.get("storage", "1Gi"),
            access_modes=list(claim.spec.access_modes or []),
            provisioner=self.provisioner,
            claim=claim,
            storage_class_name=claim_class(claim),
        )
        if not self.cluster.create_volume(volume):
            LOG.debug("Volume %s already exists", volume.metadata.name)
            return False
        LOG.info("Provisioned volume %s for claim %s at %s", volume.metadata.name, claim_key(claim), path)
        return True

    def _delete(self, entry: ExportEntry) -> None:
        # export removal goes last so a failed cleanup is retried next pass
        name = volume_name(entry.claim_uid)
        if self.cluster.delete_volume(name):
            LOG.info("Deleted volume %s", name)
        if os.path.isdir(entry.path):
            shutil.rmtree(entry.path)
        self.server.remove_export(entry.path)
        LOG.info("Removed export %s for deleted claim %s", entry.path, entry.claim_uid)
