"""
Data model for netdelta

Immutable value types for devices, snapshots and diffs, plus the scan
request / scheduled scan / execution records owned by the scheduler.
"""

from netdelta.models.device import Device, OSInfo, Port, Service
from netdelta.models.snapshot import NetworkSnapshot, SnapshotMetadata
from netdelta.models.scan import (
    Recurrence,
    ScanConfig,
    ScanExecution,
    ScanProfile,
    ScanRequest,
    ScheduledScan,
    ScheduleState,
)
from netdelta.models.delta_report import (
    ChangeType,
    DeviceDiff,
    DiffSummary,
    PortChangeType,
    PortDiff,
    PropertyChange,
    ServiceChangeType,
    ServiceDiff,
    SnapshotDiff,
)

__all__ = [
    "Device",
    "OSInfo",
    "Port",
    "Service",
    "NetworkSnapshot",
    "SnapshotMetadata",
    "Recurrence",
    "ScanConfig",
    "ScanExecution",
    "ScanProfile",
    "ScanRequest",
    "ScheduledScan",
    "ScheduleState",
    "ChangeType",
    "DeviceDiff",
    "DiffSummary",
    "PortChangeType",
    "PortDiff",
    "PropertyChange",
    "ServiceChangeType",
    "ServiceDiff",
    "SnapshotDiff",
]
