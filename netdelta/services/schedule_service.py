"""
Scan scheduler core.

Owns the scheduled scan definitions, a min-heap of pending runs keyed by
next_run, the execution history and the run/failure counters. ``tick()``
fires every due schedule into the dispatch queue without blocking; the
SchedulerService in netdelta.scheduler calls it from a single background
loop.

Per-schedule state machine:

    disabled -> scheduled -> running -> scheduled | retry_wait -> ...

A schedule never has more than one execution in flight.
"""

from collections import deque
from copy import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional
import heapq
import itertools
import threading
import uuid

from netdelta.exceptions import (
    CapacityError,
    ExecutionError,
    NotFoundError,
    ScheduleBusyError,
    ScanTimeoutError,
    ValidationError,
)
from netdelta.logging_config import get_logger
from netdelta.models.scan import (
    Recurrence,
    ScanConfig,
    ScanExecution,
    ScanProfile,
    ScanRequest,
    ScheduledScan,
    ScheduleState,
)

logger = get_logger(__name__)

# Schedule IDs, and therefore their request IDs, start with this
SCHEDULED_REQUEST_PREFIX = "sched-"

UPDATABLE_FIELDS = (
    "name",
    "description",
    "tags",
    "scan_config",
    "recurrence",
    "priority",
    "retries",
    "enabled",
)


@dataclass
class SchedulerMetrics:
    total_schedules: int = 0
    active_schedules: int = 0
    completed_runs: int = 0
    failed_runs: int = 0
    average_execution_time: float = 0.0
    next_scheduled_run: Optional[datetime] = None
    last_completed_run: Optional[datetime] = None
    active_scans: int = 0
    queued_scans: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_schedules": self.total_schedules,
            "active_schedules": self.active_schedules,
            "completed_runs": self.completed_runs,
            "failed_runs": self.failed_runs,
            "average_execution_time": self.average_execution_time,
            "next_scheduled_run": (
                self.next_scheduled_run.isoformat() if self.next_scheduled_run else None
            ),
            "last_completed_run": (
                self.last_completed_run.isoformat() if self.last_completed_run else None
            ),
            "active_scans": self.active_scans,
            "queued_scans": self.queued_scans,
        }


def _utcnow():
    return datetime.now(timezone.utc)


def coerce_recurrence(value) -> Recurrence:
    """Accept a Recurrence, timedelta, number of seconds or a mapping"""
    if isinstance(value, Recurrence):
        recurrence = value
    elif isinstance(value, timedelta):
        recurrence = Recurrence(interval=value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        recurrence = Recurrence(interval=timedelta(seconds=value))
    elif isinstance(value, dict):
        recurrence = Recurrence.from_dict(value)
    else:
        raise ValidationError(f"Unsupported recurrence: {value!r}")

    recurrence.validate()
    return recurrence


def coerce_scan_config(value) -> ScanConfig:
    if isinstance(value, ScanConfig):
        return value
    return ScanConfig.from_dict(value)


class ScanScheduler:
    """Service for managing scheduled scans and dispatching their runs"""

    def __init__(
        self,
        dispatch_queue,
        retry_delay: timedelta = timedelta(seconds=60),
        default_retries: int = 2,
        history_size: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.dispatch_queue = dispatch_queue
        self.retry_delay = retry_delay
        self.default_retries = default_retries
        self._clock = clock

        self._lock = threading.RLock()
        self._schedules: Dict[str, ScheduledScan] = {}
        self._insertion: Dict[str, int] = {}
        self._heap = []  # (next_run, sequence, scan_id)
        self._heap_sequence = itertools.count()
        self._insertion_sequence = itertools.count()
        self._request_sequence = itertools.count(1)

        self._in_flight: Dict[str, ScanExecution] = {}  # request_id -> execution
        self._running: Dict[str, str] = {}  # scan_id -> request_id
        self._history = deque(maxlen=history_size)
        self._completed_runs = 0
        self._failed_runs = 0
        self._last_completed_run: Optional[datetime] = None
        self._stopped = False

        self._completion_listeners = []
        self._failure_listeners = []

        dispatch_queue.add_listener(self._on_dispatch_complete)

    # ----- listeners -----

    def add_completion_listener(self, listener):
        """listener(scheduled_scan_or_None, execution, devices) on every successful run"""
        self._completion_listeners.append(listener)

    def add_failure_listener(self, listener):
        """listener(scheduled_scan_or_None, execution, terminal) on every failed run"""
        self._failure_listeners.append(listener)

    # ----- schedule CRUD -----

    def create_scheduled_scan(
        self,
        name: str,
        scan_config,
        recurrence,
        enabled: bool = True,
        priority: Optional[int] = None,
        retries: Optional[int] = None,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        first_run: Optional[datetime] = None,
    ) -> str:
        """
        Create a scheduled scan.

        Args:
            name: Human readable name
            scan_config: ScanConfig or its dict form
            recurrence: Recurrence, timedelta, seconds or dict form
            enabled: Start in the scheduled state
            priority: Dispatch priority (higher first); None for unprioritized
            retries: Retry budget after a failed run (default from config)
            description: Free text
            tags: Labels
            first_run: Time of the first run (default: now + interval)

        Returns:
            str: The new schedule ID

        Raises:
            ValidationError: Invalid name, configuration or recurrence
        """
        if not name or not str(name).strip():
            raise ValidationError("Scheduled scan name is required")
        scan_config = coerce_scan_config(scan_config)
        recurrence = coerce_recurrence(recurrence)
        retries = self.default_retries if retries is None else retries
        self._check_retries(retries)
        self._check_priority(priority)

        with self._lock:
            now = self._clock()
            scan = ScheduledScan(
                id=f"{SCHEDULED_REQUEST_PREFIX}{uuid.uuid4().hex[:12]}",
                name=str(name).strip(),
                scan_config=scan_config,
                recurrence=recurrence,
                enabled=bool(enabled),
                priority=priority,
                retries=retries,
                description=description,
                tags=tuple(tags),
                created_at=now,
                updated_at=now,
            )
            self._schedules[scan.id] = scan
            self._insertion[scan.id] = next(self._insertion_sequence)

            if scan.enabled:
                self._schedule(scan, first_run or now + recurrence.interval)

        logger.info(
            f"Created scheduled scan '{scan.name}' (ID: {scan.id}) - "
            f"Interval: {recurrence.interval}, Enabled: {scan.enabled}, "
            f"Next run: {scan.next_run}"
        )
        return scan.id

    def create_from_definition(self, definition: Dict) -> str:
        """Create a scheduled scan from its exported dict form"""
        if not isinstance(definition, dict):
            raise ValidationError("Schedule definition must be a mapping")
        if "scan" not in definition or "recurrence" not in definition:
            raise ValidationError("Schedule definition needs 'scan' and 'recurrence'")

        return self.create_scheduled_scan(
            name=definition.get("name"),
            scan_config=definition["scan"],
            recurrence=definition["recurrence"],
            enabled=definition.get("enabled", True),
            priority=definition.get("priority"),
            retries=definition.get("retries"),
            description=definition.get("description"),
            tags=definition.get("tags") or (),
        )

    def update_scheduled_scan(self, scan_id: str, **changes):
        """
        Update fields of a scheduled scan.

        Changing the recurrence cancels the pending run and reschedules it
        at now + new interval. Changing ``enabled`` behaves like
        enable/disable.

        Raises:
            NotFoundError: Unknown schedule ID
            ValidationError: Unknown field or invalid value (nothing is changed)
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        # Validate everything before touching the schedule
        if "name" in changes and not str(changes["name"] or "").strip():
            raise ValidationError("Scheduled scan name is required")
        if "scan_config" in changes:
            changes["scan_config"] = coerce_scan_config(changes["scan_config"])
        if "recurrence" in changes:
            changes["recurrence"] = coerce_recurrence(changes["recurrence"])
        if "retries" in changes:
            self._check_retries(changes["retries"])
        if "priority" in changes:
            self._check_priority(changes["priority"])
        if "tags" in changes:
            changes["tags"] = tuple(changes["tags"] or ())

        enabled = changes.pop("enabled", None)

        with self._lock:
            scan = self._get(scan_id)
            recurrence_changed = (
                "recurrence" in changes and changes["recurrence"] != scan.recurrence
            )

            for field_name, value in changes.items():
                setattr(scan, field_name, value)
            scan.updated_at = self._clock()

            if recurrence_changed and scan.enabled and scan.id not in self._running:
                self._cancel(scan.id)
                self._schedule(scan, self._clock() + scan.recurrence.interval)

        logger.info(f"Updated scheduled scan {scan_id}: {', '.join(sorted(changes))}")

        if enabled is not None:
            if enabled:
                self.enable_scheduled_scan(scan_id)
            else:
                self.disable_scheduled_scan(scan_id)

    def delete_scheduled_scan(self, scan_id: str):
        """Cancel a schedule's pending run and remove it"""
        with self._lock:
            scan = self._get(scan_id)
            self._cancel(scan_id)
            del self._schedules[scan_id]
            del self._insertion[scan_id]

        logger.info(f"Deleted scheduled scan '{scan.name}' (ID: {scan_id})")

    def enable_scheduled_scan(self, scan_id: str):
        with self._lock:
            scan = self._get(scan_id)
            if scan.enabled:
                return
            scan.enabled = True
            scan.updated_at = self._clock()
            if scan_id not in self._running:
                self._schedule(scan, self._clock() + scan.recurrence.interval)

        logger.info(f"Enabled scheduled scan '{scan.name}' - Next run: {scan.next_run}")

    def disable_scheduled_scan(self, scan_id: str):
        with self._lock:
            scan = self._get(scan_id)
            scan.enabled = False
            scan.updated_at = self._clock()
            self._cancel(scan_id)
            scan.next_run = None
            if scan_id not in self._running:
                scan.state = ScheduleState.DISABLED

        logger.info(f"Disabled scheduled scan '{scan.name}' (ID: {scan_id})")

    def enable_all(self):
        for scan_id in list(self._schedules):
            self.enable_scheduled_scan(scan_id)

    def disable_all(self):
        for scan_id in list(self._schedules):
            self.disable_scheduled_scan(scan_id)

    # ----- queries -----

    def get_scheduled_scan(self, scan_id: str) -> ScheduledScan:
        """Copy of one schedule's current state"""
        with self._lock:
            return copy(self._get(scan_id))

    def get_scheduled_scans(self) -> List[ScheduledScan]:
        """Copies of all schedules, in creation order"""
        with self._lock:
            return [copy(scan) for scan in self._schedules.values()]

    def get_executions(
        self, scan_id: Optional[str] = None, limit: int = 10
    ) -> List[ScanExecution]:
        """Most recent executions first, optionally for one schedule"""
        with self._lock:
            if scan_id is not None:
                self._get(scan_id)
            executions = [
                copy(e)
                for e in reversed(self._history)
                if scan_id is None or e.scan_id == scan_id
            ]
        return executions[:limit]

    def get_metrics(self) -> SchedulerMetrics:
        with self._lock:
            enabled = [s for s in self._schedules.values() if s.enabled]
            durations = [e.duration for e in self._history if e.duration is not None]
            next_runs = [s.next_run for s in enabled if s.next_run is not None]

            metrics = SchedulerMetrics(
                total_schedules=len(self._schedules),
                active_schedules=len(enabled),
                completed_runs=self._completed_runs,
                failed_runs=self._failed_runs,
                average_execution_time=(
                    sum(durations) / len(durations) if durations else 0.0
                ),
                next_scheduled_run=min(next_runs) if next_runs else None,
                last_completed_run=self._last_completed_run,
            )

        status = self.dispatch_queue.get_queue_status()
        metrics.active_scans = status["active_scan_count"]
        metrics.queued_scans = status["queue_size"]
        return metrics

    def pending_runs(self) -> List[Dict]:
        """Heap contents in firing order, for inspection"""
        with self._lock:
            return [
                {"scan_id": scan_id, "next_run": next_run}
                for next_run, _, scan_id in sorted(self._heap)
            ]

    # ----- execution -----

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """
        Fire every schedule whose next run is due.

        Due schedules are submitted in order of priority (highest first,
        prioritized before unprioritized), then next_run, then creation
        order. Submission never blocks; a failure to dispatch one schedule
        does not affect the others.

        Returns:
            List[str]: IDs of the schedules that were fired
        """
        notifications = []
        fired = []

        with self._lock:
            if self._stopped:
                return fired

            now = now or self._clock()
            due = []
            while self._heap and self._heap[0][0] <= now:
                _, _, scan_id = heapq.heappop(self._heap)
                scan = self._schedules.get(scan_id)
                if scan is None or not scan.enabled or scan_id in self._running:
                    continue
                due.append(scan)

            try:
                due.sort(key=self._firing_order)
            except Exception as e:
                # Popped entries still fire, in next_run order
                logger.error(f"Could not order due schedules: {e}", exc_info=True)

            for scan in due:
                try:
                    notifications.extend(self._fire(scan, now))
                    fired.append(scan.id)
                except Exception as e:
                    logger.error(
                        f"Failed to fire scheduled scan {scan.id}: {e}", exc_info=True
                    )
                    if scan.id not in self._running:
                        self._cancel(scan.id)
                        self._schedule(scan, now + scan.recurrence.interval)

        self._deliver(notifications)
        return fired

    def _firing_order(self, scan: ScheduledScan):
        prioritized = scan.priority is not None
        return (
            0 if prioritized else 1,
            -scan.priority if prioritized else 0,
            scan.next_run,
            self._insertion[scan.id],
        )

    def _fire(self, scan: ScheduledScan, now: datetime) -> List:
        request, execution = self._prepare(scan, now)

        try:
            self.dispatch_queue.submit(request)
        except CapacityError as e:
            logger.warning(f"Scheduled scan '{scan.name}' could not be dispatched: {e}")
            return self._undispatched(scan, execution, now, e)
        except Exception as e:
            logger.error(
                f"Scheduled scan '{scan.name}' was rejected by the dispatch queue: {e}",
                exc_info=True,
            )
            return self._undispatched(scan, execution, now, e)

        logger.info(
            f"Dispatched scheduled scan '{scan.name}' (ID: {scan.id}, "
            f"request {request.request_id}, attempt {execution.attempt})"
        )
        return []

    def _prepare(self, scan: ScheduledScan, now: datetime):
        request_id = f"{scan.id}-{next(self._request_sequence)}"
        request = scan.scan_config.to_request(
            request_id,
            priority=scan.priority,
            extra_metadata={
                "scheduled_scan_id": scan.id,
                "scheduled_scan_name": scan.name,
            },
        )
        execution = ScanExecution(
            execution_id=str(uuid.uuid4()),
            request_id=request_id,
            scan_id=scan.id,
            scan_name=scan.name,
            attempt=scan.consecutive_failures,
            queued_at=now,
        )

        scan.state = ScheduleState.RUNNING
        scan.last_run = now
        scan.next_run = None
        self._running[scan.id] = request_id
        self._in_flight[request_id] = execution
        return request, execution

    def _release(self, execution: ScanExecution):
        # Only drop the entry this execution owns
        if self._in_flight.get(execution.request_id) is execution:
            del self._in_flight[execution.request_id]

    def _undispatched(
        self, scan: ScheduledScan, execution: ScanExecution, now: datetime, error
    ) -> List:
        """Book a run the dispatch queue refused as a failed attempt"""
        self._release(execution)
        execution.ended_at = now
        execution.error = str(error)
        return self._record(scan, execution, None)

    def execute_schedule_now(
        self, scan_id: str, timeout: Optional[float] = None
    ) -> ScanExecution:
        """
        Run a schedule immediately through the dispatch queue and wait.

        The pending timer is bypassed but the concurrency cap still applies.
        The outcome updates the schedule exactly like a timed run.

        Args:
            scan_id: Schedule to run
            timeout: Seconds to wait for the result (None waits indefinitely)

        Returns:
            ScanExecution: The finished, successful execution

        Raises:
            NotFoundError: Unknown schedule ID
            ScheduleBusyError: The schedule already has a run in flight
            CapacityError: The dispatch backlog is full
            ExecutionError: The scan failed or timed out
        """
        with self._lock:
            scan = self._get(scan_id)
            if scan_id in self._running:
                raise ScheduleBusyError(scan_id)

            previous = (scan.state, scan.next_run, scan.last_run)
            self._cancel(scan_id)
            request, execution = self._prepare(scan, self._clock())

            try:
                handle = self.dispatch_queue.submit(request)
            except Exception:
                self._release(execution)
                self._running.pop(scan_id, None)
                scan.state, next_run, scan.last_run = previous
                if scan.enabled and next_run is not None:
                    self._schedule(scan, next_run, scan.state)
                raise

        logger.info(f"Executing scheduled scan '{scan.name}' now (request {request.request_id})")
        return self._await(handle, execution, timeout)

    def execute_request(
        self, request: ScanRequest, timeout: Optional[float] = None
    ) -> ScanExecution:
        """
        Run an ad-hoc request through the dispatch queue and wait for it.

        Raises:
            ValidationError: The request ID is reserved or already in flight
            CapacityError: The dispatch backlog is full
            ExecutionError: The scan failed or timed out
        """
        request_id = request.request_id
        if request_id.startswith(SCHEDULED_REQUEST_PREFIX):
            raise ValidationError(
                f"Request IDs starting with '{SCHEDULED_REQUEST_PREFIX}' are reserved "
                f"for scheduled runs: {request_id}"
            )

        execution = ScanExecution(
            execution_id=str(uuid.uuid4()),
            request_id=request_id,
            queued_at=self._clock(),
        )

        with self._lock:
            if request_id in self._in_flight:
                raise ValidationError(f"Scan request {request_id} is already in flight")
            self._in_flight[request_id] = execution
            try:
                handle = self.dispatch_queue.submit(request)
            except Exception:
                self._release(execution)
                raise

        return self._await(handle, execution, timeout)

    @staticmethod
    def _await(handle, execution: ScanExecution, timeout: Optional[float]) -> ScanExecution:
        if not handle.wait(timeout):
            raise ScanTimeoutError(
                f"Timed out after {timeout}s waiting for scan {handle.request_id}",
                handle.request_id,
            )
        if handle.error is not None:
            raise handle.error
        return execution

    def _on_dispatch_complete(self, handle):
        with self._lock:
            execution = self._in_flight.pop(handle.request_id, None)
            if execution is None:
                return

            execution.started_at = handle.started_at
            execution.ended_at = handle.finished_at or _utcnow()
            if handle.error is None:
                execution.success = True
                execution.devices_found = len(handle.devices or ())
            else:
                execution.error = str(handle.error)

            scan = self._schedules.get(execution.scan_id) if execution.scan_id else None
            if execution.scan_id:
                self._running.pop(execution.scan_id, None)
            notifications = self._record(scan, execution, handle.devices)

        self._deliver(notifications)

    def _record(self, scan: Optional[ScheduledScan], execution: ScanExecution, devices) -> List:
        """
        Book a finished execution and move its schedule to the next state.

        Caller holds the lock. Returns listener calls to make once the lock
        is released.
        """
        self._history.append(execution)
        if scan is not None:
            self._running.pop(scan.id, None)

        if execution.success:
            self._completed_runs += 1
            self._last_completed_run = execution.ended_at
        else:
            self._failed_runs += 1

        if scan is None:
            if execution.scan_id is not None:
                logger.info(
                    f"Scheduled scan {execution.scan_id} was deleted while request "
                    f"{execution.request_id} was running; result kept in history only"
                )
                return []
            if execution.success:
                return [(self._completion_listeners, (None, execution, devices))]
            return [(self._failure_listeners, (None, execution, True))]

        now = self._clock()
        scan.updated_at = now
        terminal = False

        if execution.success:
            scan.run_count += 1
            scan.consecutive_failures = 0
            next_state = ScheduleState.SCHEDULED
            next_run = now + scan.recurrence.interval
            logger.info(
                f"Scheduled scan '{scan.name}' completed: "
                f"{execution.devices_found} devices found"
            )
        else:
            scan.failure_count += 1
            scan.consecutive_failures += 1
            if scan.consecutive_failures <= scan.retries:
                next_state = ScheduleState.RETRY_WAIT
                next_run = now + self.retry_delay
                logger.warning(
                    f"Scheduled scan '{scan.name}' failed ({execution.error}); "
                    f"retry {scan.consecutive_failures}/{scan.retries} at {next_run}"
                )
            else:
                terminal = True
                scan.consecutive_failures = 0
                next_state = ScheduleState.SCHEDULED
                next_run = now + scan.recurrence.interval
                logger.error(
                    f"Scheduled scan '{scan.name}' failed ({execution.error}); "
                    f"retries exhausted, next regular run at {next_run}"
                )

        if scan.enabled:
            self._schedule(scan, next_run, next_state)
        else:
            scan.state = ScheduleState.DISABLED
            scan.next_run = None

        snapshot = copy(scan)
        if execution.success:
            return [(self._completion_listeners, (snapshot, execution, devices))]
        return [(self._failure_listeners, (snapshot, execution, terminal))]

    @staticmethod
    def _deliver(notifications):
        for listeners, args in notifications:
            for listener in list(listeners):
                try:
                    listener(*args)
                except Exception as e:
                    logger.error(f"Scheduler listener failed: {e}", exc_info=True)

    # ----- heap management -----

    def _schedule(
        self,
        scan: ScheduledScan,
        next_run: datetime,
        state: ScheduleState = ScheduleState.SCHEDULED,
    ):
        scan.next_run = next_run
        scan.state = state
        if not self._stopped:
            heapq.heappush(self._heap, (next_run, next(self._heap_sequence), scan.id))

    def _cancel(self, scan_id: str):
        remaining = [entry for entry in self._heap if entry[2] != scan_id]
        if len(remaining) != len(self._heap):
            self._heap = remaining
            heapq.heapify(self._heap)

    def _get(self, scan_id: str) -> ScheduledScan:
        scan = self._schedules.get(scan_id)
        if scan is None:
            raise NotFoundError("scheduled scan", scan_id)
        return scan

    @staticmethod
    def _check_retries(retries):
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
            raise ValidationError("retries must be a non-negative integer")

    @staticmethod
    def _check_priority(priority):
        if priority is not None and (
            not isinstance(priority, int) or isinstance(priority, bool)
        ):
            raise ValidationError(f"priority must be an integer or null: {priority!r}")

    # ----- bulk import/export and templates -----

    def export_schedules(self) -> List[Dict]:
        with self._lock:
            return [scan.to_definition() for scan in self._schedules.values()]

    def import_schedules(self, definitions: Iterable[Dict]) -> List[str]:
        """
        Create schedules from exported definitions.

        Invalid definitions are logged and skipped.

        Returns:
            List[str]: IDs of the created schedules
        """
        created = []
        for definition in definitions:
            try:
                created.append(self.create_from_definition(definition))
            except ValidationError as e:
                name = definition.get("name") if isinstance(definition, dict) else None
                logger.warning(f"Failed to import schedule {name!r}: {e}")
        logger.info(f"Imported {len(created)} scheduled scans")
        return created

    def create_daily_discovery_scan(self, targets, hour: int = 2) -> str:
        """Daily discovery scan, first run at the next ``hour``:00"""
        now = self._clock()
        first_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if first_run <= now:
            first_run += timedelta(days=1)

        return self.create_scheduled_scan(
            name=f"Daily Discovery - {_label(targets)}",
            scan_config=ScanConfig(targets=targets, profile=ScanProfile.DISCOVERY),
            recurrence=Recurrence.every(days=1),
            description=f"Daily network discovery scan at {hour:02d}:00",
            tags=("daily", "discovery", "automated"),
            retries=2,
            first_run=first_run,
        )

    def create_weekly_comprehensive_scan(
        self, targets, day_of_week: int = 6, hour: int = 1
    ) -> str:
        """Weekly comprehensive scan; ``day_of_week`` uses Monday=0 ... Sunday=6"""
        now = self._clock()
        days_ahead = (day_of_week - now.weekday()) % 7
        first_run = (now + timedelta(days=days_ahead)).replace(
            hour=hour, minute=0, second=0, microsecond=0
        )
        if first_run <= now:
            first_run += timedelta(days=7)

        return self.create_scheduled_scan(
            name=f"Weekly Comprehensive - {_label(targets)}",
            scan_config=ScanConfig(
                targets=targets, profile=ScanProfile.COMPREHENSIVE, timeout=300
            ),
            recurrence=Recurrence.every(weeks=1),
            description=f"Weekly comprehensive scan on day {day_of_week} at {hour:02d}:00",
            tags=("weekly", "comprehensive", "automated"),
            retries=3,
            first_run=first_run,
        )

    def create_custom_interval_scan(
        self,
        name: str,
        targets,
        interval_minutes: float,
        profile: ScanProfile = ScanProfile.DISCOVERY,
    ) -> str:
        return self.create_scheduled_scan(
            name=name,
            scan_config=ScanConfig(targets=targets, profile=profile),
            recurrence=Recurrence.every(minutes=interval_minutes),
            description=f"Custom scan every {interval_minutes} minutes",
            tags=("custom", "interval"),
            retries=1,
        )

    # ----- lifecycle -----

    def shutdown(self):
        """Cancel every pending run; executions already dispatched are left to the queue"""
        with self._lock:
            self._stopped = True
            cancelled = len(self._heap)
            self._heap = []
        logger.info(f"Scan scheduler stopped, {cancelled} pending runs cancelled")

    @property
    def stopped(self) -> bool:
        return self._stopped


def _label(targets) -> str:
    if isinstance(targets, str):
        return targets
    return ", ".join(targets)
