from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple
import hashlib
import uuid

from netdelta.models.device import Device


@dataclass(frozen=True)
class SnapshotMetadata:
    """Scan metadata attached to a snapshot"""

    scan_type: str = "discovery"
    scan_duration: float = 0.0
    errors: Tuple[str, ...] = ()
    scan_parameters: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "scan_type": self.scan_type,
            "scan_duration": self.scan_duration,
            "errors": list(self.errors),
            "scan_parameters": dict(self.scan_parameters),
        }


def calculate_checksum(devices: Iterable[Device]) -> str:
    """
    Calculate a checksum over the device population of a snapshot.

    The checksum covers each device's address, hardware address and port
    keys/states, so it is independent of device and port ordering.

    Args:
        devices: Devices in the snapshot

    Returns:
        str: Hex SHA-256 digest
    """
    entries = []
    for device in devices:
        ports = ",".join(
            sorted(f"{p.number}/{p.protocol}/{p.state}" for p in device.ports)
        )
        entries.append(f"{device.address}|{device.mac or ''}|{ports}")

    digest = hashlib.sha256()
    digest.update(";".join(sorted(entries)).encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class NetworkSnapshot:
    """Immutable, timestamped record of all devices observed in one scan pass"""

    id: str
    timestamp: datetime
    devices: Optional[Tuple[Device, ...]]
    device_count: int = 0
    total_ports: int = 0
    checksum: str = ""
    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)

    def __repr__(self):
        return f"<NetworkSnapshot {self.id} @ {self.timestamp.isoformat()} ({self.device_count} devices)>"

    @classmethod
    def create(
        cls,
        devices: Iterable[Device],
        scan_type: str = "discovery",
        duration: float = 0.0,
        errors: Iterable[str] = (),
        timestamp: Optional[datetime] = None,
        snapshot_id: Optional[str] = None,
        scan_parameters: Optional[Dict] = None,
    ) -> "NetworkSnapshot":
        """
        Build a snapshot from normalized devices, computing aggregate counts
        and the integrity checksum.

        Args:
            devices: Normalized devices from a scan
            scan_type: Scan profile that produced the devices
            duration: Scan duration in seconds
            errors: Non-fatal errors reported by the scan
            timestamp: Snapshot time (defaults to now, UTC)
            snapshot_id: Explicit identity (defaults to a new UUID)
            scan_parameters: Free-form scan parameters

        Returns:
            NetworkSnapshot: The new snapshot
        """
        devices = tuple(devices)
        return cls(
            id=snapshot_id or str(uuid.uuid4()),
            timestamp=timestamp or datetime.now(timezone.utc),
            devices=devices,
            device_count=len(devices),
            total_ports=sum(len(d.open_ports) for d in devices),
            checksum=calculate_checksum(devices),
            metadata=SnapshotMetadata(
                scan_type=scan_type,
                scan_duration=duration,
                errors=tuple(errors),
                scan_parameters=dict(scan_parameters or {}),
            ),
        )

    def verify(self) -> bool:
        """Check that counts and checksum match the device collection"""
        if self.devices is None:
            return False
        return (
            self.device_count == len(self.devices)
            and self.total_ports == sum(len(d.open_ports) for d in self.devices)
            and self.checksum == calculate_checksum(self.devices)
        )

    def get_device(self, address: str) -> Optional[Device]:
        for device in self.devices or ():
            if device.address == address:
                return device
        return None

    def to_dict(self, include_devices: bool = False) -> Dict:
        result = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "device_count": self.device_count,
            "total_ports": self.total_ports,
            "checksum": self.checksum,
            "metadata": self.metadata.to_dict(),
        }

        if include_devices:
            result["devices"] = [d.to_dict() for d in self.devices or ()]

        return result
