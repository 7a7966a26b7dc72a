"""
Snapshot storage.

Snapshots form a time series ordered by timestamp. Only an in-memory store
ships here; persistent backends implement the same SnapshotStore interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
import bisect
import threading

from netdelta.exceptions import ValidationError
from netdelta.logging_config import get_logger
from netdelta.models.snapshot import NetworkSnapshot

logger = get_logger(__name__)


class SnapshotStore(ABC):
    """Storage interface consumed by the network monitor and the API"""

    @abstractmethod
    def save(self, snapshot: NetworkSnapshot) -> None:
        ...

    @abstractmethod
    def load_latest(self) -> Optional[NetworkSnapshot]:
        ...

    @abstractmethod
    def load_range(self, start: datetime, end: datetime) -> List[NetworkSnapshot]:
        ...

    @abstractmethod
    def get(self, snapshot_id: str) -> Optional[NetworkSnapshot]:
        ...

    @abstractmethod
    def list_snapshots(self, limit: Optional[int] = None) -> List[NetworkSnapshot]:
        ...


class MemorySnapshotStore(SnapshotStore):
    """Thread-safe in-memory store, kept sorted by snapshot timestamp"""

    def __init__(self, max_snapshots: Optional[int] = None):
        self.max_snapshots = max_snapshots
        self._lock = threading.Lock()
        self._keys = []  # (timestamp, sequence)
        self._snapshots: List[NetworkSnapshot] = []
        self._by_id: Dict[str, NetworkSnapshot] = {}
        self._sequence = 0

    def __len__(self):
        with self._lock:
            return len(self._snapshots)

    def save(self, snapshot: NetworkSnapshot) -> None:
        """
        Store a snapshot.

        Raises:
            ValidationError: Missing timestamp/devices or a duplicate ID
        """
        if snapshot.timestamp is None or snapshot.devices is None:
            raise ValidationError("Snapshot needs a timestamp and a device collection")

        with self._lock:
            if snapshot.id in self._by_id:
                raise ValidationError(f"Snapshot {snapshot.id} already stored")

            self._sequence += 1
            key = (snapshot.timestamp, self._sequence)
            index = bisect.bisect_right(self._keys, key)
            self._keys.insert(index, key)
            self._snapshots.insert(index, snapshot)
            self._by_id[snapshot.id] = snapshot

            if self.max_snapshots and len(self._snapshots) > self.max_snapshots:
                evicted = self._snapshots.pop(0)
                self._keys.pop(0)
                del self._by_id[evicted.id]
                logger.debug(f"Evicted snapshot {evicted.id} from memory store")

        logger.debug(
            f"Stored snapshot {snapshot.id} ({snapshot.device_count} devices, "
            f"{snapshot.timestamp.isoformat()})"
        )

    def load_latest(self) -> Optional[NetworkSnapshot]:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def load_range(self, start: datetime, end: datetime) -> List[NetworkSnapshot]:
        """Snapshots with start <= timestamp <= end, oldest first"""
        if start > end:
            raise ValidationError("Range start must not be after range end")

        with self._lock:
            timestamps = [key[0] for key in self._keys]
            low = bisect.bisect_left(timestamps, start)
            high = bisect.bisect_right(timestamps, end)
            return list(self._snapshots[low:high])

    def get(self, snapshot_id: str) -> Optional[NetworkSnapshot]:
        with self._lock:
            return self._by_id.get(snapshot_id)

    def list_snapshots(self, limit: Optional[int] = None) -> List[NetworkSnapshot]:
        """Newest first"""
        with self._lock:
            snapshots = list(reversed(self._snapshots))
        return snapshots[:limit] if limit else snapshots
