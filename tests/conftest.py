"""Shared fixtures: a controllable clock, fake scan executors and snapshot builders."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from netdelta.exceptions import ExecutionError
from netdelta.models.device import Device, Port
from netdelta.models.snapshot import NetworkSnapshot
from netdelta.services.dispatch_service import DispatchQueue
from netdelta.services.scan_executor import ScanExecutor
from netdelta.services.schedule_service import ScanScheduler

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

WAIT = 5


class FakeClock:
    """Manually advanced clock for the scheduler"""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class FakeExecutor(ScanExecutor):
    """Returns canned devices immediately; fails for request IDs or targets listed in ``failing``"""

    def __init__(self, devices=None):
        self.devices = list(devices or [])
        self.failing = set()
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, request):
        with self._lock:
            self.calls.append(request)
        if request.request_id in self.failing or set(request.targets) & self.failing:
            raise ExecutionError(f"probe failed for {request.request_id}")
        return list(self.devices)


class BlockingExecutor(ScanExecutor):
    """Holds every request until the test releases it"""

    def __init__(self):
        self._condition = threading.Condition()
        self._outcomes = {}
        self.started = []
        self.active = 0
        self.peak = 0

    def execute(self, request):
        with self._condition:
            self.started.append(request.request_id)
            self.active += 1
            self.peak = max(self.peak, self.active)
            self._condition.notify_all()
            self._condition.wait_for(lambda: request.request_id in self._outcomes)
            self.active -= 1
            devices, error = self._outcomes.pop(request.request_id)

        if error is not None:
            raise error
        return devices

    def release(self, request_id, devices=(), error=None):
        with self._condition:
            self._outcomes[request_id] = (list(devices), error)
            self._condition.notify_all()

    def release_all(self):
        with self._condition:
            for request_id in self.started:
                self._outcomes.setdefault(request_id, ([], None))
            self._condition.notify_all()

    def wait_started(self, count, timeout=WAIT):
        with self._condition:
            return self._condition.wait_for(lambda: len(self.started) >= count, timeout)


def make_device(address, ports=(), mac=None, **kwargs):
    """Device with open TCP ports given as (number, service_name) pairs or plain numbers"""
    port_records = []
    for port in ports:
        if isinstance(port, tuple):
            number, name = port
        else:
            number, name = port, None
        port_records.append(Port(number=number, service_name=name))
    return Device(address=address, mac=mac, ports=port_records, last_seen=T0, **kwargs)


def make_snapshot(devices, minutes=0, snapshot_id=None):
    return NetworkSnapshot.create(
        devices,
        timestamp=T0 + timedelta(minutes=minutes),
        snapshot_id=snapshot_id,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_executor():
    return FakeExecutor(devices=[make_device("10.0.0.1", ports=[22])])


@pytest.fixture
def blocking_executor():
    executor = BlockingExecutor()
    yield executor
    executor.release_all()


@pytest.fixture
def dispatch_queue(fake_executor):
    queue = DispatchQueue(fake_executor, max_concurrent_scans=2, max_queue_size=10)
    yield queue
    queue.shutdown(wait=True, timeout=WAIT)


@pytest.fixture
def scheduler(dispatch_queue, clock):
    return ScanScheduler(
        dispatch_queue,
        retry_delay=timedelta(seconds=60),
        default_retries=2,
        history_size=100,
        clock=clock,
    )


@pytest.fixture
def blocking_queue(blocking_executor):
    queue = DispatchQueue(blocking_executor, max_concurrent_scans=2, max_queue_size=10)
    yield queue
    # Cancel the backlog before the executor fixture releases running scans
    queue.shutdown(wait=False)
