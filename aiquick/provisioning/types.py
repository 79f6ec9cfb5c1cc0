"""Shared data types for the control-plane adapter."""

import re
from dataclasses import dataclass, field
from enum import Enum


class InstanceStatus(str, Enum):
    """Lifecycle states the workflow cares about. Anything else maps to OTHER."""

    PROVISIONING = "provisioning"
    BOOTING = "booting"
    RUNNING = "running"
    DELETED = "deleted"
    OTHER = "other"

    @classmethod
    def parse(cls, value):
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class InstanceSpec:
    """Everything the control plane needs to create an instance."""

    label: str
    region: str
    instance_type: str
    image: str = "linode/ubuntu24.04"
    root_pass: str = ""
    authorized_keys: list[str] = field(default_factory=list)
    user_data: str = ""  # base64 cloud-config, forwarded as-is


@dataclass
class Instance:
    """A created instance. Owned by one workflow run."""

    id: str
    label: str
    address: str = ""
    status: InstanceStatus = InstanceStatus.PROVISIONING
    region: str = ""
    instance_type: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "Instance":
        ipv4 = data.get("ipv4") or []
        return cls(
            id=str(data.get("id", "")),
            label=data.get("label", "") or "",
            address=ipv4[0] if ipv4 else "",
            status=InstanceStatus.parse(data.get("status", "")),
            region=data.get("region", "") or "",
            instance_type=data.get("type", "") or "",
        )

    @property
    def web_url(self) -> str:
        """Public HTTPS URL served by the instance's reverse proxy."""
        return f"https://{self.address.replace('.', '-')}.ip.linodeusercontent.com"


_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_.-]*[A-Za-z0-9])?$")
_DOUBLED_SEPARATOR_RE = re.compile(r"[-_.]{2}")


def validate_label(label: str) -> bool:
    """Check a label against the provider's naming rules.

    3-64 characters, alphanumeric at both ends, ``-``, ``_`` or ``.`` in
    between, never two separators in a row.
    """
    if not 3 <= len(label) <= 64:
        return False
    if not _LABEL_RE.match(label):
        return False
    return not _DOUBLED_SEPARATOR_RE.search(label)
