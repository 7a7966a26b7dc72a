"""Tests for YAML schedule files and the schedule CLI commands."""

import pytest
import yaml

from netdelta import create_app, get_services
from netdelta.config import TestingConfig
from netdelta.exceptions import ValidationError
from netdelta.schedule_files import dump_schedules_file, load_schedules_file

from conftest import FakeClock, FakeExecutor

DEFINITIONS = [
    {
        "name": "Office LAN",
        "recurrence": {"hours": 1},
        "scan": {"targets": ["192.168.1.0/24"], "profile": "quick"},
        "retries": 1,
    },
    {
        "name": "DMZ",
        "recurrence": {"interval_seconds": 600},
        "scan": {"targets": ["10.10.0.0/24"]},
        "priority": 8,
    },
]


@pytest.fixture
def schedules_path(tmp_path):
    path = tmp_path / "schedules.yaml"
    path.write_text(yaml.safe_dump(DEFINITIONS), encoding="utf-8")
    return path


@pytest.fixture
def app():
    app = create_app(TestingConfig, executor=FakeExecutor(), clock=FakeClock())
    yield app
    get_services(app)["dispatch_queue"].shutdown(wait=True, timeout=5)


class TestScheduleFiles:
    def test_load_list(self, schedules_path):
        assert load_schedules_file(schedules_path) == DEFINITIONS

    def test_load_mapping_form(self, tmp_path):
        path = tmp_path / "schedules.yaml"
        path.write_text(yaml.safe_dump({"schedules": DEFINITIONS}), encoding="utf-8")
        assert [d["name"] for d in load_schedules_file(path)] == ["Office LAN", "DMZ"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_schedules_file(path) == []

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("schedules: [unclosed", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_schedules_file(path)

    def test_wrong_shape(self, tmp_path):
        path = tmp_path / "scalar.yaml"
        path.write_text("just a string", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_schedules_file(path)

    def test_dump_creates_parent_directories(self, tmp_path):
        path = dump_schedules_file(DEFINITIONS, tmp_path / "nested" / "out.yaml")
        assert load_schedules_file(path) == DEFINITIONS


class TestStartupImport:
    def test_app_loads_schedules_file(self, schedules_path):
        config_class = type("FileConfig", (TestingConfig,), {"SCHEDULES_FILE": str(schedules_path)})
        app = create_app(config_class, executor=FakeExecutor(), clock=FakeClock())

        scans = get_services(app)["scheduler"].get_scheduled_scans()
        assert [s.name for s in scans] == ["Office LAN", "DMZ"]
        get_services(app)["dispatch_queue"].shutdown()

    def test_missing_schedules_file_starts_empty(self, tmp_path):
        config_class = type(
            "FileConfig", (TestingConfig,), {"SCHEDULES_FILE": str(tmp_path / "absent.yaml")}
        )
        app = create_app(config_class, executor=FakeExecutor(), clock=FakeClock())

        assert get_services(app)["scheduler"].get_scheduled_scans() == []
        get_services(app)["dispatch_queue"].shutdown()


class TestCommands:
    def test_list_schedules_empty(self, app):
        result = app.test_cli_runner().invoke(args=["list-schedules"])
        assert "No scheduled scans." in result.output

    def test_import_validates_without_schedules_file(self, app, schedules_path):
        result = app.test_cli_runner().invoke(args=["import-schedules", str(schedules_path)])

        assert result.exit_code == 0
        assert "Imported 2 of 2 scheduled scans" in result.output
        assert "only validated" in result.output

    def test_import_persists_to_schedules_file(self, app, schedules_path, tmp_path):
        target = tmp_path / "saved.yaml"
        app.config["SCHEDULES_FILE"] = str(target)

        result = app.test_cli_runner().invoke(args=["import-schedules", str(schedules_path)])

        assert result.exit_code == 0
        assert [d["name"] for d in load_schedules_file(target)] == ["Office LAN", "DMZ"]

    def test_export_then_list(self, app, tmp_path):
        scheduler = get_services(app)["scheduler"]
        scheduler.import_schedules(DEFINITIONS)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["export-schedules", str(tmp_path / "out.yaml")])
        assert "Exported 2 scheduled scans" in result.output
        exported = load_schedules_file(tmp_path / "out.yaml")
        assert exported[1]["priority"] == 8

        listing = runner.invoke(args=["list-schedules"]).output
        assert "Office LAN" in listing
        assert "[scheduled]" in listing

    def test_scheduler_metrics(self, app):
        result = app.test_cli_runner().invoke(args=["scheduler-metrics"])
        assert "total_schedules: 0" in result.output
        assert "queued_scans: 0" in result.output

    def test_list_jobs_before_start(self, app):
        result = app.test_cli_runner().invoke(args=["list-jobs"])
        assert result.exit_code == 0
        assert "Job:" not in result.output
