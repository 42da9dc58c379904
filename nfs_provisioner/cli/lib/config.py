"""
Configuration loader for the NFS provisioner.

Paths, daemon tuning and reconciliation intervals are read from an INI file so
that container images can override them without code changes.
"""

from __future__ import annotations

import configparser
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/nfs-provisioner/provisioner.conf")
DEFAULT_STATIC_MANIFEST = "/etc/config/exports.json"

NFS_VERSIONS = ("2", "3", "4", "4.1")


@dataclass(frozen=True)
class ProvisionerConfig:
    state_dir: Optional[Path] = None
    export_root: str = "/export"
    exports_config: str = "/etc/exports"
    nfsd_mount_point: str = "/proc/fs/nfsd"
    static_manifest: str = DEFAULT_STATIC_MANIFEST
    resync_period: int = 15
    nfs_versions: str = "3"
    grace_period: int = 10
    nfsd_threads: int = 2
    command_timeout: int = 60
    export_options: str = "rw,insecure,no_root_squash,no_subtree_check"
    export_clients: str = "*"
    server_address: str = ""
    watch_timeout: int = 300
    api_retries: int = 3
    status_host: str = "0.0.0.0"

    @property
    def enabled_versions(self) -> list[str]:
        return [v.strip() for v in self.nfs_versions.split(",") if v.strip()]


def _config_path() -> Path:
    env = os.environ.get("NFS_PROVISIONER_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def _parse_versions(raw: str) -> str:
    tokens = [t.strip() for t in raw.split(",") if t.strip()]
    versions = [t for t in NFS_VERSIONS if t in tokens]
    if not versions:
        versions = ["3"]
    return ",".join(versions)


def resolve_server_address(cfg: ProvisionerConfig) -> str:
    """
    Address clients use to mount exports.

    Priority: configured `server_address`, `POD_IP` env var, resolved hostname.
    """
    if cfg.server_address:
        return cfg.server_address
    pod_ip = os.environ.get("POD_IP")
    if pod_ip:
        return pod_ip
    hostname = socket.gethostname()
    try:
        return socket.gethostbyname(hostname)
    except OSError:
        return hostname


def load_config() -> ProvisionerConfig:
    """
    Load config from `NFS_PROVISIONER_CONFIG_PATH` or
    `/etc/nfs-provisioner/provisioner.conf`, section `[provisioner]`.

    Missing files are not an error; defaults are returned.
    """
    parser = _read_ini(_config_path())
    section = parser["provisioner"] if parser.has_section("provisioner") else {}

    def _get(key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_int(key: str, default: int) -> int:
        raw = _get(key, str(default))
        try:
            value = int(raw)
        except ValueError:
            return default
        return value if value >= 0 else default

    state_dir_raw = _get("state_dir", "")
    state_dir = Path(state_dir_raw) if state_dir_raw else None

    return ProvisionerConfig(
        state_dir=state_dir,
        export_root=_get("export_root", "/export"),
        exports_config=_get("exports_config", "/etc/exports"),
        nfsd_mount_point=_get("nfsd_mount_point", "/proc/fs/nfsd"),
        static_manifest=_get("static_manifest", DEFAULT_STATIC_MANIFEST),
        resync_period=_get_int("resync_period", 15) or 15,
        nfs_versions=_parse_versions(_get("nfs_versions", "3")),
        grace_period=_get_int("grace_period", 10),
        nfsd_threads=_get_int("nfsd_threads", 2),
        command_timeout=_get_int("command_timeout", 60),
        export_options=_get("export_options", "rw,insecure,no_root_squash,no_subtree_check"),
        export_clients=_get("export_clients", "*"),
        server_address=_get("server_address", ""),
        watch_timeout=_get_int("watch_timeout", 300),
        api_retries=_get_int("api_retries", 3),
        status_host=_get("status_host", "0.0.0.0"),
    )


def get_state_dir(cfg: Optional[ProvisionerConfig] = None) -> Path:
    """
    Resolve the directory holding the persisted export table.

    Priority:
    1) `NFS_PROVISIONER_STATE_DIR` env var, if set
    2) `state_dir` from config
    3) `<export_root>/.nfs-provisioner`, which lives on the same volume as the
       exports so it survives container restarts
    """
    env = os.environ.get("NFS_PROVISIONER_STATE_DIR")
    if env:
        return Path(env)

    cfg = cfg or load_config()
    if cfg.state_dir:
        return cfg.state_dir
    return Path(cfg.export_root) / ".nfs-provisioner"
