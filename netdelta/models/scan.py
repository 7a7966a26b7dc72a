from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple
import ipaddress
import re

from netdelta.exceptions import ValidationError


DEFAULT_PRIORITY = 5

_PORT_RANGE = re.compile(r"^(\d+)(?:-(\d+))?$")


class ScanProfile(str, Enum):
    DISCOVERY = "discovery"
    QUICK = "quick"
    COMPREHENSIVE = "comprehensive"


class ScheduleState(str, Enum):
    DISABLED = "disabled"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    RETRY_WAIT = "retry_wait"


def validate_target(target: str) -> bool:
    """Check a scan target: single address, CIDR network or a-b address range"""
    if not isinstance(target, str):
        return False
    target = target.strip()
    if not target:
        return False

    if "-" in target and "/" not in target:
        start, _, end = target.partition("-")
        try:
            first = ipaddress.ip_address(start.strip())
            last = ipaddress.ip_address(end.strip())
        except ValueError:
            return False
        return first.version == last.version and first <= last

    try:
        if "/" in target:
            ipaddress.ip_network(target, strict=False)
        else:
            ipaddress.ip_address(target)
    except ValueError:
        return False
    return True


def validate_ports(ports: str) -> bool:
    """Check a port spec such as "80", "1-1000" or "22,80,8000-8100" """
    if not isinstance(ports, str):
        return False
    for part in ports.split(","):
        match = _PORT_RANGE.match(part.strip())
        if not match:
            return False
        low = int(match.group(1))
        high = int(match.group(2) or low)
        if not (1 <= low <= high <= 65535):
            return False
    return True


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _freeze(metadata: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(metadata or {}))


@dataclass(frozen=True)
class ScanConfig:
    """What to scan: the reusable part of a scan request"""

    targets: Tuple[str, ...]
    ports: Optional[str] = None
    profile: ScanProfile = ScanProfile.DISCOVERY
    timeout: Optional[float] = None
    metadata: Mapping = field(default_factory=dict)

    def __post_init__(self):
        targets = self.targets
        if isinstance(targets, str):
            targets = [t.strip() for t in targets.split(",") if t.strip()]
        elif not isinstance(targets, (list, tuple)):
            raise ValidationError(f"Targets must be a list or string: {targets!r}")
        object.__setattr__(self, "targets", tuple(targets))
        object.__setattr__(self, "profile", ScanProfile(self.profile))
        object.__setattr__(self, "metadata", _freeze(self.metadata))

        if not self.targets:
            raise ValidationError("At least one target must be specified")
        for target in self.targets:
            if not validate_target(target):
                raise ValidationError(f"Invalid target: {target!r}")
        if self.ports and not validate_ports(self.ports):
            raise ValidationError(f"Invalid port specification: {self.ports}")
        if self.timeout is not None:
            if not _is_number(self.timeout):
                raise ValidationError(f"Scan timeout must be a number: {self.timeout!r}")
            if self.timeout <= 0:
                raise ValidationError("Scan timeout must be positive")

    def to_request(
        self,
        request_id: str,
        priority: Optional[int] = None,
        extra_metadata: Optional[Mapping] = None,
    ) -> "ScanRequest":
        metadata = dict(self.metadata)
        metadata.update(extra_metadata or {})
        return ScanRequest(
            request_id=request_id,
            targets=self.targets,
            ports=self.ports,
            profile=self.profile,
            priority=DEFAULT_PRIORITY if priority is None else priority,
            timeout=self.timeout,
            metadata=metadata,
        )

    @classmethod
    def from_dict(cls, data: Dict) -> "ScanConfig":
        if not isinstance(data, dict):
            raise ValidationError("Scan configuration must be a mapping")
        try:
            return cls(
                targets=data.get("targets") or data.get("target") or (),
                ports=data.get("ports"),
                profile=data.get("profile", ScanProfile.DISCOVERY.value),
                timeout=data.get("timeout"),
                metadata=data.get("metadata") or {},
            )
        except ValueError as e:
            # Unknown profile names surface as ValueError from the enum
            raise ValidationError(str(e)) from e

    def to_dict(self) -> Dict:
        return {
            "targets": list(self.targets),
            "ports": self.ports,
            "profile": self.profile.value,
            "timeout": self.timeout,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ScanRequest:
    """A single scan submitted to the dispatch queue. Immutable once built."""

    request_id: str
    targets: Tuple[str, ...]
    ports: Optional[str] = None
    profile: ScanProfile = ScanProfile.DISCOVERY
    priority: int = DEFAULT_PRIORITY
    timeout: Optional[float] = None
    metadata: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if not self.request_id or not isinstance(self.request_id, str):
            raise ValidationError("Scan request ID is required and must be a string")
        if not isinstance(self.priority, int) or isinstance(self.priority, bool):
            raise ValidationError(f"Scan priority must be an integer: {self.priority!r}")
        # Reuse the target/port validation of ScanConfig
        config = ScanConfig(
            targets=self.targets,
            ports=self.ports,
            profile=self.profile,
            timeout=self.timeout,
            metadata=self.metadata,
        )
        object.__setattr__(self, "targets", config.targets)
        object.__setattr__(self, "profile", config.profile)
        object.__setattr__(self, "metadata", config.metadata)

    def to_dict(self) -> Dict:
        return {
            "request_id": self.request_id,
            "targets": list(self.targets),
            "ports": self.ports,
            "profile": self.profile.value,
            "priority": self.priority,
            "timeout": self.timeout,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class Recurrence:
    """
    How often a scheduled scan runs.

    Only fixed intervals are supported. A cron expression is accepted by the
    type so definitions can be parsed, but schedules built from one are
    rejected by the scheduler.
    """

    interval: Optional[timedelta] = None
    cron: Optional[str] = None

    @classmethod
    def every(cls, **kwargs) -> "Recurrence":
        """Shorthand: Recurrence.every(minutes=30)"""
        return cls(interval=timedelta(**kwargs))

    def validate(self):
        if self.cron:
            raise ValidationError(
                f"Cron recurrence '{self.cron}' is not supported; use a fixed interval"
            )
        if self.interval is None:
            raise ValidationError("Recurrence requires an interval")
        if self.interval <= timedelta(0):
            raise ValidationError("Recurrence interval must be positive")

    @classmethod
    def from_dict(cls, data: Dict) -> "Recurrence":
        if "cron" in data:
            return cls(cron=data["cron"])
        units = {
            k: data[k]
            for k in ("weeks", "days", "hours", "minutes", "seconds")
            if k in data
        }
        if "interval_seconds" in data:
            units["seconds"] = units.get("seconds", 0) + data["interval_seconds"]
        if not units:
            raise ValidationError("Recurrence requires an interval")
        try:
            return cls(interval=timedelta(**units))
        except TypeError as e:
            raise ValidationError(f"Invalid recurrence: {e}") from e

    def to_dict(self) -> Dict:
        if self.cron:
            return {"cron": self.cron}
        return {"interval_seconds": self.interval.total_seconds()}


@dataclass
class ScheduledScan:
    """
    A named, recurring scan definition with its own run/failure history.

    Owned by ScanScheduler; only scheduler operations mutate it.
    """

    id: str
    name: str
    scan_config: ScanConfig
    recurrence: Recurrence
    enabled: bool = True
    priority: Optional[int] = None
    retries: int = 0
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    state: ScheduleState = ScheduleState.DISABLED
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<ScheduledScan {self.name} ({self.id}) - {self.state.value}>"

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "enabled": self.enabled,
            "state": self.state.value,
            "recurrence": self.recurrence.to_dict(),
            "scan_config": self.scan_config.to_dict(),
            "priority": self.priority,
            "retries": self.retries,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_definition(self) -> Dict:
        """Export form, suitable for import_schedules / a schedules file"""
        definition = {
            "name": self.name,
            "enabled": self.enabled,
            "recurrence": self.recurrence.to_dict(),
            "scan": self.scan_config.to_dict(),
            "retries": self.retries,
        }
        if self.priority is not None:
            definition["priority"] = self.priority
        if self.description:
            definition["description"] = self.description
        if self.tags:
            definition["tags"] = list(self.tags)
        return definition


@dataclass
class ScanExecution:
    """One concrete run of a scheduled scan or an ad-hoc request"""

    execution_id: str
    request_id: str
    scan_id: Optional[str] = None
    scan_name: Optional[str] = None
    attempt: int = 0
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    devices_found: int = 0

    @property
    def finished(self) -> bool:
        return self.ended_at is not None

    @property
    def duration(self) -> Optional[float]:
        """Run time in seconds, from admission (or queueing) to completion"""
        start = self.started_at or self.queued_at
        if start is None or self.ended_at is None:
            return None
        return (self.ended_at - start).total_seconds()

    def to_dict(self) -> Dict:
        return {
            "execution_id": self.execution_id,
            "request_id": self.request_id,
            "scan_id": self.scan_id,
            "scan_name": self.scan_name,
            "attempt": self.attempt,
            "queued_at": self.queued_at.isoformat() if self.queued_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration": self.duration,
            "success": self.success,
            "error": self.error,
            "devices_found": self.devices_found,
        }

