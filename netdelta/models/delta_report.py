from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from netdelta.models.device import Device, Service


class ChangeType(str, Enum):
    DEVICE_JOINED = "device_joined"
    DEVICE_LEFT = "device_left"
    DEVICE_CHANGED = "device_changed"
    DEVICE_INACTIVE = "device_inactive"


class PortChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    STATE_CHANGED = "state_changed"


class ServiceChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    VERSION_CHANGED = "version_changed"


def _json_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple):
        return list(value)
    return value


@dataclass(frozen=True)
class PortDiff:
    port: int
    protocol: str
    change_type: PortChangeType
    old_state: Optional[str] = None
    new_state: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "change_type": self.change_type.value,
            "old_state": self.old_state,
            "new_state": self.new_state,
        }


@dataclass(frozen=True)
class ServiceDiff:
    port: int
    change_type: ServiceChangeType
    old_service: Optional[Service] = None
    new_service: Optional[Service] = None

    def to_dict(self) -> Dict:
        return {
            "port": self.port,
            "change_type": self.change_type.value,
            "old_service": self.old_service.to_dict() if self.old_service else None,
            "new_service": self.new_service.to_dict() if self.new_service else None,
        }


@dataclass(frozen=True)
class PropertyChange:
    field: str
    old_value: Any = None
    new_value: Any = None

    def to_dict(self) -> Dict:
        return {
            "field": self.field,
            "old_value": _json_value(self.old_value),
            "new_value": _json_value(self.new_value),
        }


@dataclass(frozen=True)
class DeviceDiff:
    """The per-device portion of a snapshot diff"""

    address: str
    change_type: ChangeType
    device_added: Optional[Device] = None
    device_removed: Optional[Device] = None
    port_changes: Tuple[PortDiff, ...] = ()
    service_changes: Tuple[ServiceDiff, ...] = ()
    property_changes: Tuple[PropertyChange, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.port_changes or self.service_changes or self.property_changes)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "change_type": self.change_type.value,
            "device_added": self.device_added.to_dict() if self.device_added else None,
            "device_removed": (
                self.device_removed.to_dict() if self.device_removed else None
            ),
            "port_changes": [p.to_dict() for p in self.port_changes],
            "service_changes": [s.to_dict() for s in self.service_changes],
            "property_changes": [c.to_dict() for c in self.property_changes],
        }


@dataclass(frozen=True)
class DiffSummary:
    devices_added: int = 0
    devices_removed: int = 0
    devices_changed: int = 0
    ports_changed: int = 0
    services_changed: int = 0
    total_changes: int = 0

    def has_changes(self) -> bool:
        return self.total_changes > 0

    def to_dict(self) -> Dict:
        return {
            "devices_added": self.devices_added,
            "devices_removed": self.devices_removed,
            "devices_changed": self.devices_changed,
            "ports_changed": self.ports_changed,
            "services_changed": self.services_changed,
            "total_changes": self.total_changes,
        }


@dataclass(frozen=True)
class SnapshotDiff:
    """Classified set of differences between two snapshots"""

    from_snapshot: str
    to_snapshot: str
    timestamp: datetime
    summary: DiffSummary = field(default_factory=DiffSummary)
    device_changes: Tuple[DeviceDiff, ...] = ()

    def __repr__(self):
        return (
            f"<SnapshotDiff {self.from_snapshot} -> {self.to_snapshot} "
            f"({self.summary.total_changes} changes)>"
        )

    def get_device_diff(self, address: str) -> Optional[DeviceDiff]:
        for device_diff in self.device_changes:
            if device_diff.address == address:
                return device_diff
        return None

    def to_dict(self) -> Dict:
        return {
            "from_snapshot": self.from_snapshot,
            "to_snapshot": self.to_snapshot,
            "timestamp": self.timestamp.isoformat(),
            "summary": self.summary.to_dict(),
            "device_changes": [d.to_dict() for d in self.device_changes],
        }
