"""
Kernel NFS export table.

The table is persisted as JSON in the state directory (it carries the claim
back-references the kernel format cannot hold) and rendered into the
exports(5) file read by `exportfs`.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Template

from nfs_provisioner.cli.lib.exceptions import ExportError
from nfs_provisioner.cli.lib.validators import validate_export_host, validate_export_path

EXPORTS_TEMPLATE = """# Managed by nfs-provisioner
# Config version: {{ config_version }}
{% for exp in exports %}
{{ exp.path }} {{ exp.client }}
{% endfor %}
"""

_RULE_RE = re.compile(r"^(?P<host>[^\s()]+)(?:\((?P<options>[^()]*)\))?$")


@dataclass(frozen=True)
class AccessRule:
    """Client host plus export options, e.g. `10.0.0.0/24(rw,no_root_squash)`."""

    host: str
    options: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, spec: str) -> "AccessRule":
        match = _RULE_RE.match(spec.strip()) if spec else None
        if not match:
            raise ValueError(f"Access rule must look like host(options): {spec!r}")
        host = match.group("host")
        validate_export_host(host)
        raw = match.group("options") or ""
        options = tuple(o.strip() for o in raw.split(",") if o.strip())
        return cls(host=host, options=options)

    def with_fsid(self, fsid: int) -> "AccessRule":
        if fsid <= 0 or any(o.startswith("fsid=") for o in self.options):
            return self
        return AccessRule(host=self.host, options=self.options + (f"fsid={fsid}",))

    def render(self) -> str:
        if not self.options:
            return self.host
        return f"{self.host}({','.join(self.options)})"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ExportEntry:
    path: str
    rule: AccessRule
    claim_uid: str = ""
    fsid: int = 0
    created_at: str = field(default_factory=_utc_now_iso)

    @property
    def is_static(self) -> bool:
        return not self.claim_uid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "access_rule": self.rule.render(),
            "claim_uid": self.claim_uid,
            "fsid": self.fsid,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportEntry":
        return cls(
            path=data["path"],
            rule=AccessRule.parse(data["access_rule"]),
            claim_uid=data.get("claim_uid", ""),
            fsid=int(data.get("fsid", 0)),
            created_at=data.get("created_at") or _utc_now_iso(),
        )


def _render_path(path: str) -> str:
    if any(c.isspace() for c in path):
        return f'"{path}"'
    return path


class ExportTable:
    """
    Persisted set of exports, keyed by path.

    Not thread-safe; the owning ExportServer serializes access.
    """

    def __init__(self, state_file: Path, config_path: Path):
        self.state_file = Path(state_file)
        self.config_path = Path(config_path)
        self._entries: Dict[str, ExportEntry] = {}
        self.load()

    def load(self) -> None:
        self._entries = {}
        if not self.state_file.exists():
            return
        with open(self.state_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        for item in data.get("items", []):
            entry = ExportEntry.from_dict(item)
            self._entries[entry.path] = entry

    def save(self) -> None:
        data = {"items": [e.to_dict() for e in self.entries()]}
        _atomic_write(self.state_file, json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n")

    def entries(self) -> List[ExportEntry]:
        return sorted(self._entries.values(), key=lambda e: e.path)

    def get(self, path: str) -> Optional[ExportEntry]:
        return self._entries.get(path)

    def add(self, path: str, rule: AccessRule, claim_uid: str = "") -> Tuple[ExportEntry, bool]:
        """
        Add an export entry.

        Returns:
            (entry, created); created is False when an identical entry exists

        Raises:
            ExportError: If the path is invalid or owned by another claim
        """
        try:
            validate_export_path(path)
        except ValueError as e:
            raise ExportError(path=path, details=str(e))

        existing = self._entries.get(path)
        if existing:
            if existing.claim_uid != claim_uid:
                owner = existing.claim_uid or "a static export"
                raise ExportError(path=path, details=f"already exported for {owner}")
            if existing.rule == rule:
                return existing, False
            entry = ExportEntry(
                path=path, rule=rule, claim_uid=claim_uid, fsid=existing.fsid, created_at=existing.created_at
            )
        else:
            fsid = max((e.fsid for e in self._entries.values()), default=0) + 1
            entry = ExportEntry(path=path, rule=rule, claim_uid=claim_uid, fsid=fsid)

        self._entries[path] = entry
        self.save()
        return entry, True

    def remove(self, path: str) -> Optional[ExportEntry]:
        entry = self._entries.pop(path, None)
        if entry is not None:
            self.save()
        return entry

    def restore(self, entry: ExportEntry) -> None:
        """Put back an entry exactly as it was, fsid included."""
        self._entries[entry.path] = entry
        self.save()

    def render(self) -> str:
        template = Template(EXPORTS_TEMPLATE, trim_blocks=True, lstrip_blocks=True)
        exports_render = [
            {"path": _render_path(e.path), "client": e.rule.with_fsid(e.fsid).render()} for e in self.entries()
        ]
        return template.render(
            config_version=datetime.now().strftime("%Y%m%d%H%M%S"),
            exports=exports_render,
        )

    def write_config(self) -> str:
        _atomic_write(self.config_path, self.render())
        return str(self.config_path)

    def clear_config(self) -> None:
        """Truncate the exports file, leaving it in place."""
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write("")


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
