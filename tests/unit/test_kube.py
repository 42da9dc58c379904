"""
Unit tests for the Kubernetes client wrapper.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from nfs_provisioner.cli.lib.exceptions import ClusterConfigError
from nfs_provisioner.cli.lib.kube import (
    ANN_CLAIM_UID,
    ANN_PROVISIONED_BY,
    ClusterClient,
    _retry_strategy,
    build_nfs_volume,
)


@pytest.fixture
def cluster():
    cc = ClusterClient(MagicMock())
    cc.core = MagicMock()
    cc.storage = MagicMock()
    return cc


class TestClusterConfig:
    """Tests for ClusterClient constructors."""

    @pytest.mark.unit
    def test_in_cluster_outside_a_pod(self):
        with patch.object(config, "load_incluster_config", side_effect=config.ConfigException("not in a pod")):
            with pytest.raises(ClusterConfigError, match="Failed to create cluster config: not in a pod"):
                ClusterClient.from_in_cluster()

    @pytest.mark.unit
    def test_missing_kubeconfig(self, temp_dir):
        with pytest.raises(ClusterConfigError):
            ClusterClient.from_kubeconfig(str(temp_dir / "config"))

    @pytest.mark.unit
    def test_retries_configured(self):
        with patch.object(config, "load_incluster_config"):
            cc = ClusterClient.from_in_cluster(retries=5)

        assert cc.api_client.configuration.retries.total == 5

    @pytest.mark.unit
    def test_retry_strategy(self):
        retry = _retry_strategy(3)

        assert retry.backoff_factor == 1
        assert 503 in retry.status_forcelist
        assert retry.is_retry("POST", 503)


class TestClusterCalls:
    """Tests for API call error handling."""

    @pytest.mark.unit
    def test_list_claims(self, cluster):
        cluster.core.list_persistent_volume_claim_for_all_namespaces.return_value = MagicMock(items=["c1"])

        assert cluster.list_claims() == ["c1"]

    @pytest.mark.unit
    def test_missing_storage_class(self, cluster):
        cluster.storage.read_storage_class.side_effect = ApiException(status=404)

        assert cluster.get_storage_class("nfs") is None

    @pytest.mark.unit
    def test_storage_class_error(self, cluster):
        cluster.storage.read_storage_class.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            cluster.get_storage_class("nfs")

    @pytest.mark.unit
    def test_create_existing_volume(self, cluster):
        cluster.core.create_persistent_volume.side_effect = ApiException(status=409)

        assert cluster.create_volume(MagicMock()) is False

    @pytest.mark.unit
    def test_create_volume(self, cluster):
        assert cluster.create_volume(MagicMock()) is True

    @pytest.mark.unit
    def test_delete_missing_volume(self, cluster):
        cluster.core.delete_persistent_volume.side_effect = ApiException(status=404)

        assert cluster.delete_volume("pvc-1") is False

    @pytest.mark.unit
    def test_delete_volume_error(self, cluster):
        cluster.core.delete_persistent_volume.side_effect = ApiException(status=500)

        with pytest.raises(ApiException):
            cluster.delete_volume("pvc-1")


class TestWatchClaims:
    """Tests for ClusterClient.watch_claims."""

    @pytest.mark.unit
    def test_events_delivered_until_stopped(self, cluster):
        stop = threading.Event()
        seen = []

        def on_event(event_type, obj):
            seen.append(event_type)
            if len(seen) == 2:
                stop.set()

        with patch("nfs_provisioner.cli.lib.kube.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.return_value = iter(
                [{"type": "ADDED", "object": None}, {"type": "MODIFIED", "object": None}, {"type": "DELETED"}]
            )
            cluster.watch_claims(on_event, stop)

        assert seen == ["ADDED", "MODIFIED"]
        mock_watch.return_value.stop.assert_called_once_with()

    @pytest.mark.unit
    def test_error_reopens_stream(self, cluster):
        stop = threading.Event()
        seen = []

        def on_event(event_type, obj):
            seen.append(event_type)
            stop.set()

        streams = [ApiException(status=410, reason="Gone"), iter([{"type": "ADDED", "object": None}])]

        def stream(*args, **kwargs):
            result = streams.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        with patch("nfs_provisioner.cli.lib.kube.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.side_effect = stream
            cluster.watch_claims(on_event, stop, backoff=0)

        assert seen == ["ADDED"]
        assert mock_watch.return_value.stream.call_count == 2


class TestBuildNfsVolume:
    """Tests for build_nfs_volume function."""

    @pytest.mark.unit
    def test_dynamic_volume(self):
        claim = client.V1PersistentVolumeClaim(
            metadata=client.V1ObjectMeta(name="c1", namespace="team-a", uid="uid-1"),
        )

        volume = build_nfs_volume(
            name="pvc-uid-1",
            server="10.0.0.5",
            path="/export/pvc-uid-1",
            capacity="1Mi",
            access_modes=["ReadWriteOnce"],
            provisioner="matthew/nfs",
            claim=claim,
            storage_class_name="nfs",
        )

        assert volume.metadata.name == "pvc-uid-1"
        assert volume.metadata.annotations == {ANN_PROVISIONED_BY: "matthew/nfs", ANN_CLAIM_UID: "uid-1"}
        assert volume.spec.claim_ref.namespace == "team-a"
        assert volume.spec.claim_ref.name == "c1"
        assert volume.spec.nfs.read_only is False
        assert volume.spec.persistent_volume_reclaim_policy == "Delete"

    @pytest.mark.unit
    def test_default_access_mode(self):
        volume = build_nfs_volume(
            name="nfs-static-1",
            server="10.0.0.5",
            path="/srv/shared",
            capacity="1Gi",
            access_modes=[],
            provisioner="matthew/nfs",
        )

        assert volume.spec.access_modes == ["ReadWriteMany"]
        assert volume.spec.claim_ref is None
        assert ANN_CLAIM_UID not in volume.metadata.annotations
