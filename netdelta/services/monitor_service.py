"""
Network monitor: turns finished scans into snapshots and diffs.

    scheduler completion -> NetworkSnapshot -> store -> diff vs previous -> listeners
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple
import threading

from netdelta.exceptions import NotFoundError
from netdelta.logging_config import get_logger
from netdelta.models.device import Device
from netdelta.models.delta_report import SnapshotDiff
from netdelta.models.snapshot import NetworkSnapshot
from netdelta.services.delta_service import DeltaService

logger = get_logger(__name__)


class NetworkMonitor:
    """Builds the snapshot time series from scheduler completions"""

    def __init__(self, scheduler, snapshot_store, delta_service: Optional[DeltaService] = None):
        self.snapshot_store = snapshot_store
        self.delta_service = delta_service or DeltaService()
        self._lock = threading.Lock()
        self._diff_listeners: List[Callable] = []
        self._latest_diff: Optional[SnapshotDiff] = None

        if scheduler is not None:
            scheduler.add_completion_listener(self._on_scan_completed)

    def add_diff_listener(self, listener: Callable[[NetworkSnapshot, Optional[SnapshotDiff]], None]):
        """listener(snapshot, diff); diff is None for the first snapshot"""
        self._diff_listeners.append(listener)

    @property
    def latest_diff(self) -> Optional[SnapshotDiff]:
        return self._latest_diff

    def _on_scan_completed(self, scheduled_scan, execution, devices):
        if scheduled_scan is not None:
            scan_type = scheduled_scan.scan_config.profile.value
            parameters = {
                "scheduled_scan_id": scheduled_scan.id,
                "targets": list(scheduled_scan.scan_config.targets),
            }
        else:
            scan_type = "adhoc"
            parameters = {"request_id": execution.request_id}

        self.record_scan(
            devices or [],
            scan_type=scan_type,
            duration=execution.duration or 0.0,
            timestamp=execution.ended_at,
            scan_parameters=parameters,
        )

    def record_scan(
        self,
        devices: List[Device],
        scan_type: str = "discovery",
        duration: float = 0.0,
        errors=(),
        timestamp: Optional[datetime] = None,
        scan_parameters=None,
    ) -> Tuple[NetworkSnapshot, Optional[SnapshotDiff]]:
        """
        Store a snapshot of ``devices`` and diff it against the previous one.

        Returns:
            tuple: (snapshot, diff or None when there is no older snapshot)
        """
        with self._lock:
            previous = self.snapshot_store.load_latest()
            snapshot = NetworkSnapshot.create(
                devices,
                scan_type=scan_type,
                duration=duration,
                errors=errors,
                timestamp=timestamp,
                scan_parameters=scan_parameters,
            )
            self.snapshot_store.save(snapshot)

            diff = None
            if previous is not None and previous.timestamp < snapshot.timestamp:
                diff = self.delta_service.compute_diff(previous, snapshot)
                self._latest_diff = diff

        if diff is None:
            logger.info(f"Recorded snapshot {snapshot.id} ({snapshot.device_count} devices)")
        else:
            logger.info(
                f"Recorded snapshot {snapshot.id}: "
                f"{self.delta_service.summarize_diff(diff)}"
            )

        for listener in list(self._diff_listeners):
            try:
                listener(snapshot, diff)
            except Exception as e:
                logger.error(f"Diff listener failed for snapshot {snapshot.id}: {e}", exc_info=True)

        return snapshot, diff

    def diff_snapshots(self, from_id: str, to_id: str) -> SnapshotDiff:
        """
        Diff two stored snapshots by ID.

        Raises:
            NotFoundError: Either snapshot is unknown
            ValidationError: The pair is not strictly ordered in time
        """
        previous = self.snapshot_store.get(from_id)
        if previous is None:
            raise NotFoundError("snapshot", from_id)
        current = self.snapshot_store.get(to_id)
        if current is None:
            raise NotFoundError("snapshot", to_id)
        return self.delta_service.compute_diff(previous, current)
