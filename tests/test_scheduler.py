"""Tests for the scan scheduler core: firing, retries, ordering and bookkeeping."""

from datetime import timedelta

import pytest

from netdelta.exceptions import (
    CapacityError,
    ExecutionError,
    NotFoundError,
    ScheduleBusyError,
    ScanTimeoutError,
    ValidationError,
)
from netdelta.models.scan import Recurrence, ScanConfig, ScanProfile, ScheduleState
from netdelta.services.dispatch_service import DispatchQueue
from netdelta.services.schedule_service import ScanScheduler

from conftest import T0, WAIT

FAILING_TARGET = "10.9.9.9"


def lan_config(target="10.0.0.0/24"):
    return ScanConfig(targets=[target])


def run_due(scheduler, dispatch_queue, clock, scan_id):
    """Advance the clock to a schedule's next run, fire it and wait for completion"""
    clock.now = scheduler.get_scheduled_scan(scan_id).next_run
    fired = scheduler.tick()
    assert dispatch_queue.wait_idle(WAIT)
    return fired


class RecordingQueue:
    """Dispatch queue stand-in that records submission order and never completes"""

    def __init__(self):
        self.submitted = []

    def add_listener(self, listener):
        pass

    def submit(self, request):
        self.submitted.append(request)
        return None

    def get_queue_status(self):
        return {"active_scan_count": len(self.submitted), "queue_size": 0}


class RejectingQueue(RecordingQueue):
    """Records submissions but rejects requests for the named schedules"""

    def __init__(self, rejected_names, error=None):
        super().__init__()
        self.rejected_names = set(rejected_names)
        self.error = error or ValidationError("rejected by dispatch queue")

    def submit(self, request):
        if request.metadata.get("scheduled_scan_name") in self.rejected_names:
            raise self.error
        return super().submit(request)


class TestCreate:
    def test_first_run_is_one_interval_out(self, scheduler):
        scan_id = scheduler.create_scheduled_scan(
            "LAN", lan_config(), Recurrence.every(minutes=30)
        )
        scan = scheduler.get_scheduled_scan(scan_id)

        assert scan.state is ScheduleState.SCHEDULED
        assert scan.next_run == T0 + timedelta(minutes=30)
        assert scan.retries == 2
        assert scan.created_at == T0

    def test_disabled_schedule_has_no_next_run(self, scheduler):
        scan_id = scheduler.create_scheduled_scan(
            "LAN", lan_config(), Recurrence.every(minutes=30), enabled=False
        )
        scan = scheduler.get_scheduled_scan(scan_id)

        assert scan.state is ScheduleState.DISABLED
        assert scan.next_run is None

    def test_accepts_plain_forms(self, scheduler):
        scan_id = scheduler.create_scheduled_scan(
            "LAN", {"targets": ["10.0.0.1"], "profile": "quick"}, {"minutes": 5}
        )
        scan = scheduler.get_scheduled_scan(scan_id)

        assert scan.scan_config.profile is ScanProfile.QUICK
        assert scan.recurrence.interval == timedelta(minutes=5)

    def test_cron_recurrence_rejected(self, scheduler):
        with pytest.raises(ValidationError, match="not supported"):
            scheduler.create_scheduled_scan("LAN", lan_config(), {"cron": "0 * * * *"})
        assert scheduler.get_scheduled_scans() == []

    @pytest.mark.parametrize("recurrence", [0, timedelta(seconds=-1), "hourly"])
    def test_bad_recurrence_rejected(self, scheduler, recurrence):
        with pytest.raises(ValidationError):
            scheduler.create_scheduled_scan("LAN", lan_config(), recurrence)

    def test_name_required(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.create_scheduled_scan(" ", lan_config(), 60)

    def test_negative_retries_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.create_scheduled_scan("LAN", lan_config(), 60, retries=-1)

    @pytest.mark.parametrize("priority", ["high", 2.5, True])
    def test_non_integer_priority_rejected(self, scheduler, priority):
        with pytest.raises(ValidationError, match="priority"):
            scheduler.create_scheduled_scan("LAN", lan_config(), 60, priority=priority)
        assert scheduler.get_scheduled_scans() == []

    def test_import_skips_non_integer_priority(self, scheduler):
        definitions = [
            {"name": name, "scan": {"targets": ["10.0.0.1"]}, "recurrence": 60, "priority": priority}
            for name, priority in (("bad", "high"), ("good", 3))
        ]

        created = scheduler.import_schedules(definitions)

        assert [scheduler.get_scheduled_scan(i).name for i in created] == ["good"]

class TestFiring:
    def test_nothing_fires_before_due(self, scheduler, clock):
        scheduler.create_scheduled_scan("LAN", lan_config(), Recurrence.every(minutes=10))
        clock.advance(minutes=9)
        assert scheduler.tick() == []

    def test_successful_run(self, scheduler, dispatch_queue, clock, fake_executor):
        completed = []
        scheduler.add_completion_listener(
            lambda scan, execution, devices: completed.append((scan.id, execution, devices))
        )
        scan_id = scheduler.create_scheduled_scan(
            "LAN", lan_config(), Recurrence.every(minutes=10), priority=7
        )

        assert run_due(scheduler, dispatch_queue, clock, scan_id) == [scan_id]

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.SCHEDULED
        assert scan.run_count == 1
        assert scan.last_run == T0 + timedelta(minutes=10)
        assert scan.next_run == T0 + timedelta(minutes=20)

        request = fake_executor.calls[0]
        assert request.priority == 7
        assert request.metadata["scheduled_scan_id"] == scan_id

        (listener_scan_id, execution, devices), = completed
        assert listener_scan_id == scan_id
        assert execution.success
        assert execution.devices_found == 1
        assert devices[0].address == "10.0.0.1"

    def test_exactly_one_run_per_interval(self, scheduler, dispatch_queue, clock, fake_executor):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), Recurrence.every(minutes=10))

        for _ in range(3):
            run_due(scheduler, dispatch_queue, clock, scan_id)
            # A second tick at the same instant must not fire again
            assert scheduler.tick() == []

        assert len(fake_executor.calls) == 3
        assert scheduler.get_scheduled_scan(scan_id).run_count == 3

    def test_two_of_three_run_and_third_waits(self, blocking_queue, blocking_executor, clock):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        ids = [
            scheduler.create_scheduled_scan(f"scan {i}", lan_config(f"10.0.{i}.0/24"), 600)
            for i in range(3)
        ]

        clock.advance(minutes=10)
        assert scheduler.tick() == ids

        assert blocking_executor.wait_started(2)
        status = blocking_queue.get_queue_status()
        assert status["active_scan_count"] == 2
        assert status["queue_size"] == 1
        started_scans = {request_id.rsplit("-", 1)[0] for request_id in blocking_executor.started}
        assert started_scans == set(ids[:2])

        blocking_executor.release(blocking_executor.started[0])
        assert blocking_executor.wait_started(3)
        assert blocking_executor.started[2].startswith(ids[2])
        assert blocking_executor.peak == 2

    def test_in_flight_schedule_is_not_fired_again(self, blocking_queue, clock):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)

        clock.advance(minutes=1)
        assert scheduler.tick() == [scan_id]
        clock.advance(minutes=5)
        assert scheduler.tick() == []

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.RUNNING
        assert scan.next_run is None


class TestOrdering:
    def test_priority_then_next_run_then_creation(self, clock):
        queue = RecordingQueue()
        scheduler = ScanScheduler(queue, clock=clock)

        late = scheduler.create_scheduled_scan("late", lan_config(), Recurrence.every(minutes=5))
        early = scheduler.create_scheduled_scan("early", lan_config(), Recurrence.every(minutes=3))
        tie = scheduler.create_scheduled_scan("tie", lan_config(), Recurrence.every(minutes=5))
        low = scheduler.create_scheduled_scan("low", lan_config(), 600, priority=1)
        high = scheduler.create_scheduled_scan("high", lan_config(), 600, priority=9)

        clock.advance(minutes=10)
        fired = scheduler.tick()

        assert fired == [high, low, early, late, tie]
        submitted = [r.metadata["scheduled_scan_id"] for r in queue.submitted]
        assert submitted == fired


class TestIsolation:
    def test_rejected_schedule_does_not_stop_the_others(self, clock):
        queue = RejectingQueue({"broken"})
        scheduler = ScanScheduler(queue, clock=clock, default_retries=1)
        first = scheduler.create_scheduled_scan("first", lan_config(), 60, priority=3)
        broken = scheduler.create_scheduled_scan("broken", lan_config(), 60, priority=5)
        last = scheduler.create_scheduled_scan("last", lan_config(), 60)

        clock.advance(minutes=1)
        assert scheduler.tick() == [broken, first, last]

        submitted = [r.metadata["scheduled_scan_id"] for r in queue.submitted]
        assert submitted == [first, last]
        scan = scheduler.get_scheduled_scan(broken)
        assert scan.state is ScheduleState.RETRY_WAIT
        assert scan.next_run == clock.now + timedelta(seconds=60)
        assert scheduler.get_executions(broken)[0].error == "rejected by dispatch queue"
        assert [p["scan_id"] for p in scheduler.pending_runs()] == [broken]

    def test_unorderable_schedule_does_not_drop_due_runs(self, clock):
        queue = RecordingQueue()
        scheduler = ScanScheduler(queue, clock=clock)
        good = scheduler.create_scheduled_scan("good", lan_config(), 60, priority=3)
        bad = scheduler.create_scheduled_scan("bad", lan_config(), 60)
        # Bypass validation to put an unusable priority on a stored schedule
        scheduler._schedules[bad].priority = "high"

        clock.advance(minutes=1)
        assert scheduler.tick() == [good]

        assert [r.metadata["scheduled_scan_id"] for r in queue.submitted] == [good]
        assert scheduler.get_scheduled_scan(good).state is ScheduleState.RUNNING
        assert [p["scan_id"] for p in scheduler.pending_runs()] == [bad]
        assert scheduler.get_scheduled_scan(bad).next_run == clock.now + timedelta(minutes=1)


class TestRetries:
    @pytest.fixture
    def failing_scan(self, scheduler, fake_executor):
        fake_executor.failing.add(FAILING_TARGET)
        return scheduler.create_scheduled_scan(
            "flaky", lan_config(FAILING_TARGET), Recurrence.every(minutes=10), retries=2
        )

    def test_retry_bound(self, scheduler, dispatch_queue, clock, failing_scan):
        failures = []
        scheduler.add_failure_listener(
            lambda scan, execution, terminal: failures.append((execution.attempt, terminal))
        )

        run_due(scheduler, dispatch_queue, clock, failing_scan)
        scan = scheduler.get_scheduled_scan(failing_scan)
        assert scan.state is ScheduleState.RETRY_WAIT
        assert scan.next_run == clock.now + timedelta(seconds=60)

        run_due(scheduler, dispatch_queue, clock, failing_scan)
        assert scheduler.get_scheduled_scan(failing_scan).state is ScheduleState.RETRY_WAIT

        run_due(scheduler, dispatch_queue, clock, failing_scan)
        scan = scheduler.get_scheduled_scan(failing_scan)
        assert scan.state is ScheduleState.SCHEDULED
        assert scan.next_run == clock.now + timedelta(minutes=10)
        assert scan.failure_count == 3
        assert scan.consecutive_failures == 0

        assert failures == [(0, False), (1, False), (2, True)]

    def test_cadence_resumes_after_exhaustion(self, scheduler, dispatch_queue, clock, failing_scan):
        for _ in range(3):
            run_due(scheduler, dispatch_queue, clock, failing_scan)

        # Next regular run starts a fresh retry budget
        run_due(scheduler, dispatch_queue, clock, failing_scan)
        scan = scheduler.get_scheduled_scan(failing_scan)
        assert scan.state is ScheduleState.RETRY_WAIT
        assert scan.consecutive_failures == 1
        assert scan.failure_count == 4

    def test_success_resets_consecutive_failures(
        self, scheduler, dispatch_queue, clock, fake_executor, failing_scan
    ):
        run_due(scheduler, dispatch_queue, clock, failing_scan)
        fake_executor.failing.clear()
        run_due(scheduler, dispatch_queue, clock, failing_scan)

        scan = scheduler.get_scheduled_scan(failing_scan)
        assert scan.consecutive_failures == 0
        assert scan.run_count == 1
        assert scan.next_run == clock.now + timedelta(minutes=10)

    def test_zero_retries_goes_straight_back_to_cadence(
        self, scheduler, dispatch_queue, clock, fake_executor
    ):
        fake_executor.failing.add(FAILING_TARGET)
        scan_id = scheduler.create_scheduled_scan(
            "once", lan_config(FAILING_TARGET), Recurrence.every(minutes=10), retries=0
        )

        run_due(scheduler, dispatch_queue, clock, scan_id)

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.SCHEDULED
        assert scan.next_run == clock.now + timedelta(minutes=10)

    def test_capacity_error_counts_as_failed_run(self, blocking_executor, clock):
        queue = DispatchQueue(blocking_executor, max_concurrent_scans=1, max_queue_size=0)
        try:
            scheduler = ScanScheduler(queue, clock=clock, default_retries=1)
            first = scheduler.create_scheduled_scan("first", lan_config(), 60)
            second = scheduler.create_scheduled_scan("second", lan_config(), 60)

            clock.advance(minutes=1)
            assert scheduler.tick() == [first, second]

            scan = scheduler.get_scheduled_scan(second)
            assert scan.state is ScheduleState.RETRY_WAIT
            assert scan.failure_count == 1
            assert scheduler.get_metrics().failed_runs == 1
            assert "full" in scheduler.get_executions(second)[0].error
        finally:
            queue.shutdown(wait=False)


class TestLifecycle:
    def test_disable_cancels_pending_run(self, scheduler, clock):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        scheduler.disable_scheduled_scan(scan_id)

        clock.advance(minutes=5)
        assert scheduler.tick() == []
        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.DISABLED
        assert scan.next_run is None
        assert scheduler.pending_runs() == []

    def test_enable_recomputes_next_run(self, scheduler, clock):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60, enabled=False)
        clock.advance(minutes=30)
        scheduler.enable_scheduled_scan(scan_id)

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.SCHEDULED
        assert scan.next_run == clock.now + timedelta(minutes=1)

    def test_enable_is_idempotent(self, scheduler):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        scheduler.enable_scheduled_scan(scan_id)
        assert len(scheduler.pending_runs()) == 1

    def test_disable_while_running_settles_disabled(self, blocking_queue, blocking_executor, clock):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        clock.advance(minutes=1)
        scheduler.tick()
        assert blocking_executor.wait_started(1)

        scheduler.disable_scheduled_scan(scan_id)
        assert scheduler.get_scheduled_scan(scan_id).state is ScheduleState.RUNNING

        blocking_executor.release(blocking_executor.started[0])
        assert blocking_queue.wait_idle(WAIT)

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.state is ScheduleState.DISABLED
        assert scan.run_count == 1
        assert scheduler.pending_runs() == []

    def test_delete(self, scheduler, clock):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        scheduler.delete_scheduled_scan(scan_id)

        clock.advance(minutes=5)
        assert scheduler.tick() == []
        with pytest.raises(NotFoundError):
            scheduler.get_scheduled_scan(scan_id)

    def test_delete_while_running_keeps_schedule_identity(
        self, blocking_queue, blocking_executor, clock
    ):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        notified = []
        scheduler.add_completion_listener(lambda *args: notified.append(args))
        scheduler.add_failure_listener(lambda *args: notified.append(args))
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        clock.advance(minutes=1)
        scheduler.tick()
        assert blocking_executor.wait_started(1)

        scheduler.delete_scheduled_scan(scan_id)
        blocking_executor.release(blocking_executor.started[0])
        assert blocking_queue.wait_idle(WAIT)

        execution = scheduler.get_executions()[0]
        assert execution.success
        assert (execution.scan_id, execution.scan_name) == (scan_id, "LAN")
        assert notified == []
        assert scheduler.get_metrics().completed_runs == 1
        assert scheduler.pending_runs() == []

    def test_update_recurrence_reschedules(self, scheduler, clock):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600)
        clock.advance(minutes=10)
        scheduler.update_scheduled_scan(scan_id, recurrence=Recurrence.every(minutes=5))

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.next_run == clock.now + timedelta(minutes=5)
        assert scheduler.pending_runs() == [{"scan_id": scan_id, "next_run": scan.next_run}]

    def test_update_other_fields_keeps_next_run(self, scheduler):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600)
        before = scheduler.get_scheduled_scan(scan_id).next_run

        scheduler.update_scheduled_scan(scan_id, name="Office LAN", priority=3, tags=["office"])

        scan = scheduler.get_scheduled_scan(scan_id)
        assert (scan.name, scan.priority, scan.tags) == ("Office LAN", 3, ("office",))
        assert scan.next_run == before

    def test_invalid_update_changes_nothing(self, scheduler):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600)

        with pytest.raises(ValidationError):
            scheduler.update_scheduled_scan(scan_id, name="New", recurrence={"cron": "* * * * *"})
        with pytest.raises(ValidationError):
            scheduler.update_scheduled_scan(scan_id, owner="me")

        assert scheduler.get_scheduled_scan(scan_id).name == "LAN"

    def test_invalid_priority_update_changes_nothing(self, scheduler):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600, priority=2)

        with pytest.raises(ValidationError, match="priority"):
            scheduler.update_scheduled_scan(scan_id, name="New", priority="urgent")

        scan = scheduler.get_scheduled_scan(scan_id)
        assert (scan.name, scan.priority) == ("LAN", 2)

    def test_update_enabled_flag(self, scheduler):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600)
        scheduler.update_scheduled_scan(scan_id, enabled=False)
        assert scheduler.get_scheduled_scan(scan_id).state is ScheduleState.DISABLED

    @pytest.mark.parametrize(
        "operation",
        [
            lambda s: s.update_scheduled_scan("missing", name="x"),
            lambda s: s.delete_scheduled_scan("missing"),
            lambda s: s.enable_scheduled_scan("missing"),
            lambda s: s.disable_scheduled_scan("missing"),
            lambda s: s.execute_schedule_now("missing"),
            lambda s: s.get_executions("missing"),
        ],
    )
    def test_unknown_id_is_not_found(self, scheduler, operation):
        with pytest.raises(NotFoundError, match="missing"):
            operation(scheduler)

    def test_enable_all_and_disable_all(self, scheduler):
        ids = [scheduler.create_scheduled_scan(f"s{i}", lan_config(), 60) for i in range(3)]

        scheduler.disable_all()
        assert all(not s.enabled for s in scheduler.get_scheduled_scans())

        scheduler.enable_all()
        assert [s.id for s in scheduler.get_scheduled_scans() if s.enabled] == ids

    def test_shutdown_cancels_pending_runs(self, scheduler, clock):
        scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        scheduler.shutdown()

        clock.advance(minutes=5)
        assert scheduler.stopped
        assert scheduler.tick() == []
        assert scheduler.pending_runs() == []


class TestExecuteNow:
    def test_runs_immediately(self, scheduler, clock):
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 3600)
        clock.advance(minutes=1)

        execution = scheduler.execute_schedule_now(scan_id, timeout=WAIT)

        assert execution.success
        assert execution.scan_id == scan_id
        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.run_count == 1
        assert scan.next_run == clock.now + timedelta(hours=1)
        assert len(scheduler.pending_runs()) == 1

    def test_failure_is_raised_and_recorded(self, scheduler, fake_executor):
        fake_executor.failing.add(FAILING_TARGET)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(FAILING_TARGET), 3600)

        with pytest.raises(ExecutionError):
            scheduler.execute_schedule_now(scan_id, timeout=WAIT)

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.failure_count == 1
        assert scan.state is ScheduleState.RETRY_WAIT

    def test_busy_schedule_rejected(self, blocking_queue, clock):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        clock.advance(minutes=1)
        scheduler.tick()

        with pytest.raises(ScheduleBusyError):
            scheduler.execute_schedule_now(scan_id)

    def test_capacity_error_leaves_schedule_untouched(self, blocking_executor, clock):
        queue = DispatchQueue(blocking_executor, max_concurrent_scans=1, max_queue_size=0)
        try:
            scheduler = ScanScheduler(queue, clock=clock)
            busy = scheduler.create_scheduled_scan("busy", lan_config(), 60)
            idle = scheduler.create_scheduled_scan("idle", lan_config(), 3600)
            before = scheduler.get_scheduled_scan(idle).next_run

            clock.advance(minutes=1)
            scheduler.tick()
            assert blocking_executor.wait_started(1)

            with pytest.raises(CapacityError):
                scheduler.execute_schedule_now(idle)

            scan = scheduler.get_scheduled_scan(idle)
            assert scan.state is ScheduleState.SCHEDULED
            assert scan.next_run == before
            assert scan.failure_count == 0
            assert scheduler.get_scheduled_scan(busy).state is ScheduleState.RUNNING
        finally:
            queue.shutdown(wait=False)

    def test_ad_hoc_request(self, scheduler):
        seen = []
        scheduler.add_completion_listener(lambda scan, execution, devices: seen.append(scan))

        request = lan_config("10.0.0.7").to_request("adhoc-1")
        execution = scheduler.execute_request(request, timeout=WAIT)

        assert execution.success
        assert execution.scan_id is None
        assert scheduler.get_executions()[0].request_id == "adhoc-1"
        assert seen == [None]

    def test_scheduled_request_ids_are_reserved(self, blocking_queue, blocking_executor, clock):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)
        clock.advance(minutes=1)
        scheduler.tick()
        assert blocking_executor.wait_started(1)
        running_id = blocking_executor.started[0]

        with pytest.raises(ValidationError, match="reserved"):
            scheduler.execute_request(lan_config().to_request(running_id), timeout=WAIT)

        blocking_executor.release(running_id)
        assert blocking_queue.wait_idle(WAIT)

        scan = scheduler.get_scheduled_scan(scan_id)
        assert scan.run_count == 1
        assert scan.state is ScheduleState.SCHEDULED
        assert scheduler.get_executions(scan_id)[0].request_id == running_id

        clock.now = scan.next_run
        assert scheduler.tick() == [scan_id]

    def test_duplicate_ad_hoc_request_leaves_first_run_alone(
        self, blocking_queue, blocking_executor, clock
    ):
        scheduler = ScanScheduler(blocking_queue, clock=clock)
        request = lan_config("10.0.0.7").to_request("adhoc-1")

        with pytest.raises(ScanTimeoutError):
            scheduler.execute_request(request, timeout=0.05)
        assert blocking_executor.wait_started(1)

        with pytest.raises(ValidationError, match="already in flight"):
            scheduler.execute_request(request, timeout=WAIT)

        blocking_executor.release("adhoc-1")
        assert blocking_queue.wait_idle(WAIT)

        executions = scheduler.get_executions()
        assert [e.request_id for e in executions] == ["adhoc-1"]
        assert executions[0].success
        assert scheduler.get_metrics().completed_runs == 1


class TestMetricsAndHistory:
    def test_metrics(self, scheduler, dispatch_queue, clock, fake_executor):
        fake_executor.failing.add(FAILING_TARGET)
        ok = scheduler.create_scheduled_scan("ok", lan_config(), Recurrence.every(minutes=10))
        bad = scheduler.create_scheduled_scan(
            "bad", lan_config(FAILING_TARGET), Recurrence.every(hours=1), retries=0
        )
        scheduler.create_scheduled_scan("off", lan_config(), 60, enabled=False)

        run_due(scheduler, dispatch_queue, clock, ok)
        run_due(scheduler, dispatch_queue, clock, ok)
        with pytest.raises(ExecutionError):
            scheduler.execute_schedule_now(bad, timeout=WAIT)

        metrics = scheduler.get_metrics()
        assert metrics.total_schedules == 3
        assert metrics.active_schedules == 2
        assert metrics.completed_runs == 2
        assert metrics.failed_runs == 1
        assert metrics.average_execution_time >= 0
        assert metrics.next_scheduled_run == min(
            scheduler.get_scheduled_scan(ok).next_run,
            scheduler.get_scheduled_scan(bad).next_run,
        )
        assert metrics.last_completed_run is not None
        assert metrics.active_scans == 0
        assert metrics.queued_scans == 0

        as_dict = metrics.to_dict()
        assert as_dict["next_scheduled_run"] == metrics.next_scheduled_run.isoformat()

    def test_empty_metrics(self, scheduler):
        metrics = scheduler.get_metrics()
        assert metrics.total_schedules == 0
        assert metrics.average_execution_time == 0.0
        assert metrics.next_scheduled_run is None

    def test_history_is_bounded_newest_first(self, dispatch_queue, clock):
        scheduler = ScanScheduler(dispatch_queue, clock=clock, history_size=3)
        scan_id = scheduler.create_scheduled_scan("LAN", lan_config(), 60)

        for _ in range(5):
            run_due(scheduler, dispatch_queue, clock, scan_id)

        executions = scheduler.get_executions(limit=10)
        assert len(executions) == 3
        assert [e.request_id for e in executions] == [f"{scan_id}-5", f"{scan_id}-4", f"{scan_id}-3"]
        assert scheduler.get_metrics().completed_runs == 5
        assert len(scheduler.get_executions(scan_id, limit=2)) == 2


class TestImportExportAndTemplates:
    def test_export_then_import(self, scheduler, dispatch_queue, clock):
        scheduler.create_scheduled_scan(
            "LAN",
            ScanConfig(targets=["10.0.0.0/24"], ports="22,80", profile="quick"),
            Recurrence.every(hours=2),
            priority=4,
            description="office",
            tags=["office"],
        )
        definitions = scheduler.export_schedules()

        other = ScanScheduler(dispatch_queue, clock=clock)
        created = other.import_schedules(definitions + [{"name": "broken", "scan": {}}])

        assert len(created) == 1
        imported = other.get_scheduled_scan(created[0])
        assert imported.name == "LAN"
        assert imported.scan_config.ports == "22,80"
        assert imported.recurrence.interval == timedelta(hours=2)
        assert imported.priority == 4
        assert imported.tags == ("office",)

    def test_daily_discovery_template(self, scheduler):
        scan_id = scheduler.create_daily_discovery_scan("192.168.1.0/24", hour=2)
        scan = scheduler.get_scheduled_scan(scan_id)

        # T0 is 12:00, so the first run is 02:00 the next day
        assert scan.next_run == T0.replace(hour=2) + timedelta(days=1)
        assert scan.recurrence.interval == timedelta(days=1)
        assert scan.scan_config.profile is ScanProfile.DISCOVERY

    def test_weekly_comprehensive_template(self, scheduler):
        scan_id = scheduler.create_weekly_comprehensive_scan(["10.0.0.0/24"], day_of_week=6, hour=1)
        scan = scheduler.get_scheduled_scan(scan_id)

        # T0 is Monday 2024-01-01; Sunday 01:00 follows six days later
        assert scan.next_run == T0.replace(day=7, hour=1)
        assert scan.recurrence.interval == timedelta(weeks=1)
        assert scan.retries == 3

    def test_custom_interval_template(self, scheduler):
        scan_id = scheduler.create_custom_interval_scan(
            "Quick check", "10.0.0.1", 15, profile=ScanProfile.QUICK
        )
        scan = scheduler.get_scheduled_scan(scan_id)

        assert scan.next_run == T0 + timedelta(minutes=15)
        assert scan.tags == ("custom", "interval")
