"""
Static exports pre-seeded from a JSON manifest.

Everything here is best-effort: a bad manifest or entry is reported and the
provisioner carries on.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nfs_provisioner.cli.lib.exceptions import ManifestError
from nfs_provisioner.cli.lib.exports import AccessRule
from nfs_provisioner.cli.lib.kube import ClusterClient, build_nfs_volume
from nfs_provisioner.cli.lib.server import ExportServer
from nfs_provisioner.cli.lib.validators import validate_export_path

LOG = logging.getLogger(__name__)

STATIC_VOLUME_PREFIX = "nfs-static-"


class StaticExport(BaseModel):
    """One manifest entry."""

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(..., description="Absolute directory to export")
    access_rule: str = Field(..., alias="accessRule", description="Client spec, e.g. 10.0.0.0/24(rw)")
    capacity: str = Field("1Gi", description="Capacity advertised on the static volume")

    @field_validator("path")
    def validate_path(cls, v: str) -> str:
        validate_export_path(v)
        return v

    @field_validator("access_rule")
    def validate_access_rule(cls, v: str) -> str:
        AccessRule.parse(v)
        return v

    @property
    def rule(self) -> AccessRule:
        return AccessRule.parse(self.access_rule)


@dataclass
class StaticLoadResult:
    registered: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def static_volume_name(path: str) -> str:
    return STATIC_VOLUME_PREFIX + hashlib.sha256(path.encode()).hexdigest()[:8]


def load_manifest(manifest_path: str) -> Tuple[List[StaticExport], List[str]]:
    """
    Read and validate a manifest.

    Returns:
        (valid entries, error messages); a missing file yields ([], [])

    Raises:
        ManifestError: If the file exists but is not a JSON list
    """
    path = Path(manifest_path)
    if not path.exists():
        return [], []

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ManifestError(path=manifest_path, details=e)

    if not isinstance(data, list):
        raise ManifestError(path=manifest_path, details=f"expected a list of exports, got {type(data).__name__}")

    entries: List[StaticExport] = []
    errors: List[str] = []
    for index, item in enumerate(data):
        try:
            entries.append(StaticExport.model_validate(item))
        except ValidationError as e:
            messages = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            errors.append(f"{manifest_path}[{index}]: {messages}")
    return entries, errors


def provision_static(
    server: ExportServer,
    manifest_path: str,
    client: Optional[ClusterClient] = None,
    server_address: Optional[str] = None,
    provisioner: str = "",
) -> StaticLoadResult:
    """
    Export every valid manifest entry and, given a cluster client, create a
    PersistentVolume for it.

    Static exports left over from an earlier manifest are unexported. Their
    directories and volumes are kept. An unreadable manifest changes nothing.
    """
    result = StaticLoadResult()
    entries: List[StaticExport] = []
    if Path(manifest_path).exists():
        try:
            entries, errors = load_manifest(manifest_path)
        except ManifestError as e:
            LOG.error("%s; keeping existing static exports", e)
            result.errors.append(str(e))
            return result
        result.errors.extend(errors)
    else:
        LOG.info("No static exports manifest at %s", manifest_path)

    _remove_stale(server, {entry.path for entry in entries}, result)

    for entry in entries:
        try:
            server.add_export(entry.path, entry.rule)
        except Exception as e:
            result.errors.append(f"{entry.path}: {e}")
            continue
        result.registered.append(entry.path)

        if client is None or not server_address:
            continue
        volume = build_nfs_volume(
            name=static_volume_name(entry.path),
            server=server_address,
            path=entry.path,
            capacity=entry.capacity,
            access_modes=["ReadWriteMany"],
            provisioner=provisioner,
            reclaim_policy="Retain",
        )
        try:
            if client.create_volume(volume):
                LOG.info("Created static volume %s for %s", volume.metadata.name, entry.path)
        except Exception as e:
            result.errors.append(f"{entry.path}: creating volume failed: {e}")

    for message in result.errors:
        LOG.error("Static export error: %s", message)
    LOG.info("Registered %d static exports", len(result.registered))
    return result


def _remove_stale(server: ExportServer, wanted: Set[str], result: StaticLoadResult) -> None:
    for entry in server.exports():
        if not entry.is_static or entry.path in wanted:
            continue
        try:
            server.remove_export(entry.path)
        except Exception as e:
            result.errors.append(f"{entry.path}: removing stale export failed: {e}")
            continue
        LOG.info("Removed static export %s, no longer in the manifest", entry.path)
        result.removed.append(entry.path)
