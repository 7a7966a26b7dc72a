from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple


PORT_STATES = ("open", "closed", "filtered")
PROTOCOLS = ("tcp", "udp")


@dataclass(frozen=True)
class Port:
    """A single probed port, keyed by (protocol, number)"""

    number: int
    protocol: str = "tcp"
    state: str = "open"
    service_name: Optional[str] = None
    service_version: Optional[str] = None
    confidence: Optional[int] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.protocol, self.number)

    def to_dict(self) -> Dict:
        return {
            "number": self.number,
            "protocol": self.protocol,
            "state": self.state,
            "service_name": self.service_name,
            "service_version": self.service_version,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Service:
    """A service fingerprint observed on a port"""

    port: int
    name: str
    protocol: str = "tcp"
    product: Optional[str] = None
    version: Optional[str] = None
    extra_info: Optional[str] = None
    confidence: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "port": self.port,
            "name": self.name,
            "protocol": self.protocol,
            "product": self.product,
            "version": self.version,
            "extra_info": self.extra_info,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class OSInfo:
    """Best OS match for a device, pre-selected by the normalizer"""

    name: Optional[str] = None
    version: Optional[str] = None
    family: Optional[str] = None
    vendor: Optional[str] = None
    accuracy: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "version": self.version,
            "family": self.family,
            "vendor": self.vendor,
            "accuracy": self.accuracy,
        }


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Device:
    """
    One network endpoint as observed by a single scan.

    Devices are keyed by address. A new scan always produces new Device
    instances; they are never mutated inside a snapshot.
    """

    address: str
    mac: Optional[str] = None
    hostname: Optional[str] = None
    vendor: Optional[str] = None
    device_type: Optional[str] = None
    ports: Tuple[Port, ...] = ()
    services: Tuple[Service, ...] = ()
    os_info: Optional[OSInfo] = None
    is_active: bool = True
    last_seen: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        # Accept lists from callers but store tuples so the value stays hashable
        object.__setattr__(self, "ports", tuple(self.ports))
        object.__setattr__(self, "services", tuple(self.services))

    @property
    def open_ports(self) -> Tuple[Port, ...]:
        return tuple(p for p in self.ports if p.state == "open")

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "mac": self.mac,
            "hostname": self.hostname,
            "vendor": self.vendor,
            "device_type": self.device_type,
            "ports": [p.to_dict() for p in self.ports],
            "services": [s.to_dict() for s in self.services],
            "os_info": self.os_info.to_dict() if self.os_info else None,
            "is_active": self.is_active,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }
