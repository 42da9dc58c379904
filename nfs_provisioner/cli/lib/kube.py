"""Kubernetes API access for claims, storage classes and volumes."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from urllib3.util.retry import Retry

from nfs_provisioner.cli.lib.exceptions import ClusterConfigError

LOG = logging.getLogger(__name__)

ANN_PROVISIONED_BY = "pv.kubernetes.io/provisioned-by"
ANN_STORAGE_CLASS = "volume.beta.kubernetes.io/storage-class"
ANN_CLAIM_UID = "nfs-provisioner/claim-uid"

RETRY_STATUSES = [429, 500, 502, 503, 504]

ClaimEventHandler = Callable[[str, object], None]


def _retry_strategy(retries: int) -> Retry:
    # Volume names are deterministic and create conflicts are tolerated, so
    # POST and DELETE are as safe to retry as GET.
    return Retry(
        total=retries,
        backoff_factor=1,  # 1s, 2s, 4s...
        status_forcelist=RETRY_STATUSES,
        allowed_methods=None,
        raise_on_status=False,
    )


class ClusterClient:
    """
    Thin wrapper over the Kubernetes client for the calls the provisioner makes.

    Transient failures (connection errors, 429 and 5xx responses) are retried
    with exponential backoff by the underlying urllib3 pool.
    """

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.storage = client.StorageV1Api(api_client)

    @classmethod
    def from_in_cluster(cls, retries: int = 3) -> "ClusterClient":
        configuration = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=configuration)
        except config.ConfigException as e:
            raise ClusterConfigError(details=str(e))
        configuration.retries = _retry_strategy(retries)
        return cls(client.ApiClient(configuration))

    @classmethod
    def from_kubeconfig(cls, path: str, retries: int = 3) -> "ClusterClient":
        configuration = client.Configuration()
        try:
            config.load_kube_config(config_file=path, client_configuration=configuration)
        except (config.ConfigException, OSError) as e:
            raise ClusterConfigError(details=str(e))
        configuration.retries = _retry_strategy(retries)
        return cls(client.ApiClient(configuration))

    def list_claims(self) -> List[client.V1PersistentVolumeClaim]:
        return self.core.list_persistent_volume_claim_for_all_namespaces().items

    def get_storage_class(self, name: str) -> Optional[client.V1StorageClass]:
        try:
            return self.storage.read_storage_class(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create_volume(self, volume: client.V1PersistentVolume) -> bool:
        """
        Create a PersistentVolume.

        Returns:
            True if created, False if a volume with that name already exists
        """
        try:
            self.core.create_persistent_volume(volume)
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        return True

    def delete_volume(self, name: str) -> bool:
        """
        Delete a PersistentVolume.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            self.core.delete_persistent_volume(name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def watch_claims(
        self,
        on_event: ClaimEventHandler,
        stop_event: threading.Event,
        timeout_seconds: int = 300,
        backoff: float = 5.0,
    ) -> None:
        """
        Stream claim events to on_event until stop_event is set.

        The server closes each stream after timeout_seconds; it is reopened
        immediately. Errors are logged and the stream is reopened after backoff.
        """
        while not stop_event.is_set():
            w = watch.Watch()
            try:
                for event in w.stream(
                    self.core.list_persistent_volume_claim_for_all_namespaces,
                    timeout_seconds=timeout_seconds,
                ):
                    if stop_event.is_set():
                        w.stop()
                        break
                    on_event(event.get("type", ""), event.get("object"))
            except ApiException as e:
                LOG.warning("Claim watch failed with status %s: %s", e.status, e.reason)
                stop_event.wait(backoff)
            except Exception as e:
                LOG.warning("Claim watch interrupted: %s", e)
                stop_event.wait(backoff)


def build_nfs_volume(
    name: str,
    server: str,
    path: str,
    capacity: str,
    access_modes: List[str],
    provisioner: str,
    claim: Optional[client.V1PersistentVolumeClaim] = None,
    storage_class_name: Optional[str] = None,
    reclaim_policy: str = "Delete",
) -> client.V1PersistentVolume:
    """Build a PersistentVolume backed by an NFS export."""
    annotations: Dict[str, str] = {ANN_PROVISIONED_BY: provisioner}
    claim_ref = None
    if claim is not None:
        annotations[ANN_CLAIM_UID] = claim.metadata.uid
        claim_ref = client.V1ObjectReference(
            api_version="v1",
            kind="PersistentVolumeClaim",
            name=claim.metadata.name,
            namespace=claim.metadata.namespace,
            uid=claim.metadata.uid,
        )

    return client.V1PersistentVolume(
        api_version="v1",
        kind="PersistentVolume",
        metadata=client.V1ObjectMeta(name=name, annotations=annotations),
        spec=client.V1PersistentVolumeSpec(
            capacity={"storage": capacity},
            access_modes=access_modes or ["ReadWriteMany"],
            persistent_volume_reclaim_policy=reclaim_policy,
            storage_class_name=storage_class_name,
            claim_ref=claim_ref,
            nfs=client.V1NFSVolumeSource(server=server, path=path, read_only=False),
        ),
    )
