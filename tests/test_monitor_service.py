"""Tests for the network monitor: snapshots and diffs from finished scans."""

from datetime import timedelta
import time

import pytest

from netdelta.exceptions import NotFoundError
from netdelta.models.delta_report import ChangeType
from netdelta.models.scan import ScanConfig
from netdelta.services.monitor_service import NetworkMonitor
from netdelta.services.snapshot_service import MemorySnapshotStore

from conftest import T0, WAIT, make_device


@pytest.fixture
def store():
    return MemorySnapshotStore()


@pytest.fixture
def monitor(store):
    return NetworkMonitor(None, store)


class TestRecordScan:
    def test_first_snapshot_has_no_diff(self, monitor, store):
        snapshot, diff = monitor.record_scan([make_device("10.0.0.1")], timestamp=T0)

        assert diff is None
        assert store.load_latest() is snapshot
        assert monitor.latest_diff is None

    def test_second_snapshot_is_diffed_against_latest(self, monitor):
        first, _ = monitor.record_scan([make_device("10.0.0.1", ports=[22])], timestamp=T0)
        second, diff = monitor.record_scan(
            [make_device("10.0.0.1", ports=[22, 80]), make_device("10.0.0.2")],
            timestamp=T0 + timedelta(minutes=5),
        )

        assert diff.from_snapshot == first.id
        assert diff.to_snapshot == second.id
        assert diff.summary.devices_added == 1
        assert diff.summary.ports_changed == 1
        assert monitor.latest_diff is diff

    def test_out_of_order_snapshot_is_stored_without_diff(self, monitor, store):
        monitor.record_scan([make_device("10.0.0.1")], timestamp=T0 + timedelta(minutes=5))
        late, diff = monitor.record_scan([make_device("10.0.0.1")], timestamp=T0)

        assert diff is None
        assert store.get(late.id) is late

    def test_listeners_receive_every_snapshot(self, monitor):
        seen = []

        def broken(snapshot, diff):
            raise RuntimeError("listener bug")

        monitor.add_diff_listener(broken)
        monitor.add_diff_listener(lambda snapshot, diff: seen.append(diff))

        monitor.record_scan([make_device("10.0.0.1")], timestamp=T0)
        monitor.record_scan([], timestamp=T0 + timedelta(minutes=1))

        assert seen[0] is None
        assert seen[1].device_changes[0].change_type is ChangeType.DEVICE_LEFT

    def test_metadata_recorded(self, monitor):
        snapshot, _ = monitor.record_scan(
            [], scan_type="quick", duration=2.5, errors=["host timeout"], timestamp=T0
        )

        assert snapshot.metadata.scan_type == "quick"
        assert snapshot.metadata.scan_duration == 2.5
        assert snapshot.metadata.errors == ("host timeout",)


class TestDiffSnapshots:
    def test_diff_by_id(self, monitor):
        first, _ = monitor.record_scan([make_device("10.0.0.1")], timestamp=T0)
        second, _ = monitor.record_scan([], timestamp=T0 + timedelta(minutes=1))

        diff = monitor.diff_snapshots(first.id, second.id)

        assert diff.summary.devices_removed == 1

    def test_unknown_snapshot(self, monitor):
        first, _ = monitor.record_scan([], timestamp=T0)

        with pytest.raises(NotFoundError, match="missing"):
            monitor.diff_snapshots(first.id, "missing")
        with pytest.raises(NotFoundError, match="missing"):
            monitor.diff_snapshots("missing", first.id)


class TestSchedulerIntegration:
    def test_completed_runs_become_snapshots(self, scheduler, dispatch_queue, clock, store, fake_executor):
        monitor = NetworkMonitor(scheduler, store)
        scan_id = scheduler.create_scheduled_scan("LAN", ScanConfig(targets=["10.0.0.0/24"]), 60)

        clock.advance(minutes=1)
        scheduler.tick()
        assert dispatch_queue.wait_idle(WAIT)

        # Completion times come from the wall clock; keep the two runs strictly ordered
        time.sleep(0.01)
        fake_executor.devices.append(make_device("10.0.0.2", ports=[443]))
        clock.advance(minutes=1)
        scheduler.tick()
        assert dispatch_queue.wait_idle(WAIT)

        snapshots = store.list_snapshots()
        assert len(snapshots) == 2
        assert snapshots[0].metadata.scan_type == "discovery"
        assert snapshots[0].metadata.scan_parameters["scheduled_scan_id"] == scan_id
        assert monitor.latest_diff.summary.devices_added == 1

    def test_failed_runs_produce_no_snapshot(self, scheduler, dispatch_queue, clock, store, fake_executor):
        NetworkMonitor(scheduler, store)
        fake_executor.failing.add("10.9.9.9")
        scheduler.create_scheduled_scan("flaky", ScanConfig(targets=["10.9.9.9"]), 60)

        clock.advance(minutes=1)
        scheduler.tick()
        assert dispatch_queue.wait_idle(WAIT)

        assert len(store) == 0

    def test_ad_hoc_scan_snapshot(self, scheduler, store):
        NetworkMonitor(scheduler, store)

        scheduler.execute_request(ScanConfig(targets=["10.0.0.1"]).to_request("adhoc-1"), timeout=WAIT)

        snapshot = store.load_latest()
        assert snapshot.metadata.scan_type == "adhoc"
        assert snapshot.metadata.scan_parameters == {"request_id": "adhoc-1"}
