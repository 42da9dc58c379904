"""
Input validation functions.
"""

import ipaddress
import os
import re
from dataclasses import dataclass
from typing import List

QUALIFIED_NAME_MAX_LENGTH = 63
DNS1123_SUBDOMAIN_MAX_LENGTH = 253

_QUALIFIED_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9_.]*[a-z0-9])?$")
_DNS1123_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS1123_SUBDOMAIN_RE = re.compile(rf"^{_DNS1123_LABEL}(\.{_DNS1123_LABEL})*$")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9*?]([A-Za-z0-9*?.-]*[A-Za-z0-9*?])?$")

ERROR_REQUIRED = "Required value"
ERROR_INVALID = "Invalid value"


@dataclass(frozen=True)
class FieldError:
    """A single validation failure for a named field."""

    field: str
    type: str
    value: str
    detail: str = ""

    def __str__(self) -> str:
        if self.type == ERROR_REQUIRED:
            return f"{self.field}: {self.type}"
        text = f'{self.field}: {self.type}: "{self.value}"'
        if self.detail:
            text += f": {self.detail}"
        return text


def is_qualified_name(value: str) -> List[str]:
    """
    Check that value is a qualified name: an optional DNS subdomain prefix and a
    slash, followed by a lowercase name of at most 63 characters.

    Returns:
        List of error messages; empty when the value is valid
    """
    errors: List[str] = []
    parts = value.split("/")
    if len(parts) == 1:
        name = parts[0]
    elif len(parts) == 2:
        prefix, name = parts
        if not prefix:
            errors.append("prefix part must be non-empty")
        elif len(prefix) > DNS1123_SUBDOMAIN_MAX_LENGTH:
            errors.append(f"prefix part must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters")
        elif not _DNS1123_SUBDOMAIN_RE.match(prefix):
            errors.append(
                "prefix part must consist of lower case alphanumeric characters, '-' or '.', "
                "and must start and end with an alphanumeric character"
            )
    else:
        return [
            "a qualified name must consist of alphanumeric characters, '-', '_' or '.', "
            "with an optional DNS subdomain prefix and '/' (e.g. 'example.com/my-name')"
        ]

    if not name:
        errors.append("name part must be non-empty")
    elif len(name) > QUALIFIED_NAME_MAX_LENGTH:
        errors.append(f"name part must be no more than {QUALIFIED_NAME_MAX_LENGTH} characters")
    elif not _QUALIFIED_NAME_RE.match(name):
        errors.append(
            "name part must consist of lower case alphanumeric characters, '-', '_' or '.', "
            "and must start and end with an alphanumeric character"
        )
    return errors


def validate_provisioner(provisioner: str, field: str = "provisioner") -> List[FieldError]:
    """
    Validate the provisioner identity.

    Args:
        provisioner: Provisioner name (e.g., "matthew/nfs"); case is not significant
        field: Field path used in error messages

    Returns:
        List of FieldError; empty when valid
    """
    if not provisioner:
        return [FieldError(field=field, type=ERROR_REQUIRED, value=provisioner)]
    return [
        FieldError(field=field, type=ERROR_INVALID, value=provisioner, detail=msg)
        for msg in is_qualified_name(provisioner.lower())
    ]


def validate_export_path(path: str) -> None:
    """
    Validate an export directory path.

    Raises:
        ValueError: If path is not an absolute, normalized path
    """
    if not path:
        raise ValueError("Export path cannot be empty")
    if not os.path.isabs(path):
        raise ValueError(f"Export path must be absolute: {path}")
    if os.path.normpath(path) != path.rstrip("/") or path == "/":
        raise ValueError(f"Export path must be a normalized directory other than '/': {path}")
    if any(c in path for c in "\n\"\\"):
        raise ValueError(f"Export path contains unsupported characters: {path}")


def validate_export_host(host: str) -> None:
    """
    Validate the client part of an export rule.

    Accepts `*`, an IP address, a CIDR network, or a (wildcard) hostname.

    Raises:
        ValueError: If host is invalid
    """
    if not host:
        raise ValueError("Export client cannot be empty")
    if host == "*":
        return
    if "/" in host:
        try:
            ipaddress.ip_network(host, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid client network: {e}")
        return
    try:
        ipaddress.ip_address(host)
        return
    except ValueError:
        pass
    if not _HOSTNAME_RE.match(host):
        raise ValueError(f"Invalid client host: {host}")
