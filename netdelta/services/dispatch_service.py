"""
Concurrency-bounded dispatch queue for scan requests.

At most ``max_concurrent_scans`` requests execute at once; the rest wait in a
bounded backlog ordered by priority (highest first), then submission order.
Every admission and release happens under one lock, so the active count can
never exceed the cap, however completions and submissions interleave.
Executor calls run on a thread pool of the same size; a request that times
out frees its slot at once, but a call that never returns keeps its pool
worker, so later requests wait for a free worker.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import heapq
import itertools
import threading

from netdelta.exceptions import (
    CapacityError,
    ExecutionError,
    ScanCancelledError,
    ScanTimeoutError,
    ValidationError,
)
from netdelta.logging_config import get_logger
from netdelta.models.device import Device
from netdelta.models.scan import ScanRequest

logger = get_logger(__name__)


class HandleStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScanHandle:
    """Caller-side view of one submitted request"""

    def __init__(self, request: ScanRequest):
        self.request = request
        self.status = HandleStatus.QUEUED
        self.queued_at = datetime.now(timezone.utc)
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.devices: Optional[List[Device]] = None
        self.error: Optional[ExecutionError] = None
        self._future = Future()
        self._claimed = False

    def __repr__(self):
        return f"<ScanHandle {self.request.request_id} - {self.status}>"

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def succeeded(self) -> bool:
        return self.status == HandleStatus.COMPLETED

    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the request finishes; returns False on timeout"""
        try:
            self._future.exception(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def result(self, timeout: Optional[float] = None) -> List[Device]:
        """
        Wait for the scan and return its devices.

        Raises:
            ExecutionError: The scan failed, timed out or was cancelled
            concurrent.futures.TimeoutError: ``timeout`` elapsed first
        """
        return self._future.result(timeout=timeout)

    def _resolve(self, devices: Optional[List[Device]], error: Optional[ExecutionError]):
        self.finished_at = datetime.now(timezone.utc)
        if error is None:
            self.status = HandleStatus.COMPLETED
            self.devices = devices
            self._future.set_result(devices)
        else:
            self.status = HandleStatus.FAILED
            self.error = error
            self._future.set_exception(error)


class DispatchQueue:
    """
    Admits scan requests to the executor under a concurrency cap.

    Completion listeners are called with the finished ScanHandle, from the
    worker thread, before the slot is released and before the handle's
    waiters are woken.
    """

    def __init__(
        self,
        executor,
        max_concurrent_scans: int = 3,
        max_queue_size: int = 50,
        default_timeout: Optional[float] = 300,
    ):
        if max_concurrent_scans < 1:
            raise ValidationError("max_concurrent_scans must be at least 1")
        if max_queue_size < 0:
            raise ValidationError("max_queue_size cannot be negative")

        self.executor = executor
        self.max_concurrent_scans = max_concurrent_scans
        self.max_queue_size = max_queue_size
        self.default_timeout = default_timeout

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._active: Dict[str, ScanHandle] = {}
        self._backlog = []  # heap of (-priority, sequence, handle)
        self._sequence = itertools.count()
        self._listeners: List[Callable[[ScanHandle], None]] = []
        self._closed = False
        self.peak_active = 0
        # Executor calls never outnumber the cap, even after a timeout frees a slot
        self._pool = ThreadPoolExecutor(
            max_workers=max_concurrent_scans, thread_name_prefix="scan-worker"
        )

    def add_listener(self, listener: Callable[[ScanHandle], None]):
        """Register a completion/failure listener"""
        self._listeners.append(listener)

    def submit(self, request: ScanRequest) -> ScanHandle:
        """
        Submit a request without blocking.

        Args:
            request: The scan to run

        Returns:
            ScanHandle: Handle to wait on or inspect

        Raises:
            CapacityError: The backlog is full or the queue is shut down
            ValidationError: A request with the same ID is already in flight
        """
        handle = ScanHandle(request)

        with self._lock:
            if self._closed:
                raise CapacityError("Dispatch queue is shut down")

            request_id = request.request_id
            if request_id in self._active or any(
                entry[2].request_id == request_id for entry in self._backlog
            ):
                raise ValidationError(f"Scan request {request_id} is already queued")

            if len(self._active) < self.max_concurrent_scans:
                self._admit(handle)
            else:
                if len(self._backlog) >= self.max_queue_size:
                    logger.warning(
                        f"Rejected scan request {request_id}: backlog full "
                        f"({self.max_queue_size} items)"
                    )
                    raise CapacityError(
                        f"Scan queue is full ({self.max_queue_size} items)"
                    )
                heapq.heappush(
                    self._backlog, (-request.priority, next(self._sequence), handle)
                )
                logger.debug(
                    f"Queued scan request {request_id} "
                    f"(priority {request.priority}, backlog {len(self._backlog)})"
                )

        return handle

    def _admit(self, handle: ScanHandle):
        # Caller holds self._lock
        self._active[handle.request_id] = handle
        self.peak_active = max(self.peak_active, len(self._active))
        handle.status = HandleStatus.RUNNING
        handle.started_at = datetime.now(timezone.utc)

        self._pool.submit(self._run, handle)
        logger.info(
            f"Started scan request {handle.request_id} "
            f"({len(self._active)}/{self.max_concurrent_scans} active)"
        )

    def _run(self, handle: ScanHandle):
        request = handle.request
        timeout = request.timeout if request.timeout is not None else self.default_timeout

        timer = None
        if timeout is not None:
            timer = threading.Timer(timeout, self._expire, args=(handle, timeout))
            timer.daemon = True
            timer.start()

        devices = None
        error = None
        try:
            devices = list(self.executor.execute(request))
        except ExecutionError as e:
            error = e
            if error.request_id is None:
                error.request_id = request.request_id
        except Exception as e:
            error = ExecutionError(
                f"Scan {request.request_id} failed: {e}", request.request_id
            )
        finally:
            if timer is not None:
                timer.cancel()

        if not self._claim(handle):
            logger.warning(
                f"Scan request {request.request_id} finished after its timeout; result dropped"
            )
            return

        if error is None:
            logger.info(f"Scan request {request.request_id} found {len(devices)} devices")
        else:
            logger.error(f"Scan request {request.request_id} failed: {error}")

        self._finish(handle, devices, error)

    def _expire(self, handle: ScanHandle, timeout: float):
        # The pool worker stays busy until the stuck executor call returns
        if not self._claim(handle):
            return

        error = ScanTimeoutError(
            f"Scan {handle.request_id} timed out after {timeout}s", handle.request_id
        )
        logger.error(f"Scan request {handle.request_id} failed: {error}")
        self._finish(handle, None, error)

    def _claim(self, handle: ScanHandle) -> bool:
        """First caller to claim a handle gets to finish it"""
        with self._lock:
            if handle._claimed:
                return False
            handle._claimed = True
            return True

    def _finish(self, handle: ScanHandle, devices, error):
        handle.status = HandleStatus.COMPLETED if error is None else HandleStatus.FAILED
        handle.devices = devices
        handle.error = error
        handle.finished_at = datetime.now(timezone.utc)

        self._notify(handle)

        with self._lock:
            self._active.pop(handle.request_id, None)
            while self._backlog and len(self._active) < self.max_concurrent_scans:
                _, _, next_handle = heapq.heappop(self._backlog)
                self._admit(next_handle)

            handle._resolve(devices, error)

            if not self._active and not self._backlog:
                self._idle.notify_all()

    def _notify(self, handle: ScanHandle):
        for listener in list(self._listeners):
            try:
                listener(handle)
            except Exception as e:
                logger.error(
                    f"Completion listener failed for {handle.request_id}: {e}",
                    exc_info=True,
                )

    def get_queue_status(self) -> Dict:
        """Active count and backlog size"""
        with self._lock:
            return {
                "active_scan_count": len(self._active),
                "queue_size": len(self._backlog),
                "max_concurrent_scans": self.max_concurrent_scans,
                "max_queue_size": self.max_queue_size,
                "accepting": not self._closed,
            }

    def get_active_requests(self) -> List[str]:
        with self._lock:
            return sorted(self._active)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is active or queued; False on timeout"""
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._active and not self._backlog, timeout=timeout
            )

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting requests, cancel the backlog and drain in-flight scans.

        Args:
            wait: Wait for in-flight executions to finish
            timeout: Maximum seconds to wait

        Returns:
            bool: True if nothing is left running
        """
        with self._lock:
            self._closed = True
            cancelled = [entry[2] for entry in sorted(self._backlog)]
            self._backlog = []

        for handle in cancelled:
            error = ScanCancelledError(
                f"Scan {handle.request_id} cancelled by shutdown", handle.request_id
            )
            handle.status = HandleStatus.FAILED
            handle.error = error
            self._notify(handle)
            handle._resolve(None, error)

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} queued scan requests")

        if not wait:
            self._pool.shutdown(wait=False)
            with self._lock:
                return not self._active

        drained = self.wait_idle(timeout)
        if drained:
            logger.info("Dispatch queue drained")
        else:
            logger.warning("Dispatch queue shutdown timed out with scans still running")
        # Workers still stuck in an executor call finish in the background
        self._pool.shutdown(wait=False)
        return drained
