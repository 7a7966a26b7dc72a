"""
Flask Application Factory

This module creates and configures the Flask application for the netdelta
network monitor: scan dispatch, recurring scan scheduling, snapshot storage
and snapshot diffing.
"""

import atexit
import os
from datetime import timedelta
from pathlib import Path

import click
from flask import Flask
from dotenv import load_dotenv

load_dotenv()

from netdelta.logging_config import setup_logging, get_logger
from netdelta.config import get_config
from netdelta.scheduler import SchedulerService
from netdelta.schedule_files import dump_schedules_file, load_schedules_file
from netdelta.services.delta_service import delta_service
from netdelta.services.dispatch_service import DispatchQueue
from netdelta.services.monitor_service import NetworkMonitor
from netdelta.services.scan_executor import NmapScanExecutor
from netdelta.services.schedule_service import ScanScheduler
from netdelta.services.snapshot_service import MemorySnapshotStore

logger = get_logger(__name__)

EXTENSION_KEY = "netdelta"


def build_services(config, executor=None, clock=None):
    """
    Wire the dispatch queue, scheduler, snapshot store and monitor.

    Args:
        config: Mapping of configuration values (e.g. ``app.config``)
        executor: ScanExecutor to use (default: NmapScanExecutor)
        clock: Clock for the scheduler (default: UTC wall clock)

    Returns:
        dict: The wired components
    """
    if executor is None:
        executor = NmapScanExecutor(
            sudo=config.get("NMAP_SUDO", False),
            extra_arguments=config.get("NMAP_EXTRA_ARGUMENTS", ""),
        )

    dispatch_queue = DispatchQueue(
        executor,
        max_concurrent_scans=config.get("MAX_CONCURRENT_SCANS", 3),
        max_queue_size=config.get("MAX_QUEUE_SIZE", 50),
        default_timeout=config.get("DEFAULT_SCAN_TIMEOUT", 300),
    )

    scheduler_kwargs = {
        "retry_delay": timedelta(seconds=config.get("RETRY_DELAY_SECONDS", 60)),
        "default_retries": config.get("DEFAULT_RETRIES", 2),
        "history_size": config.get("EXECUTION_HISTORY_SIZE", 100),
    }
    if clock is not None:
        scheduler_kwargs["clock"] = clock
    scheduler = ScanScheduler(dispatch_queue, **scheduler_kwargs)

    snapshot_store = MemorySnapshotStore(max_snapshots=config.get("MAX_SNAPSHOTS"))
    monitor = NetworkMonitor(scheduler, snapshot_store, delta_service)

    return {
        "executor": executor,
        "dispatch_queue": dispatch_queue,
        "scheduler": scheduler,
        "snapshot_store": snapshot_store,
        "monitor": monitor,
        "delta_service": delta_service,
        "scheduler_service": SchedulerService(
            scheduler, tick_seconds=config.get("SCHEDULER_TICK_SECONDS", 1)
        ),
    }


def get_services(app):
    return app.extensions[EXTENSION_KEY]


def start_background(app):
    """Start the scheduling loop and register a drain on interpreter exit"""
    services = get_services(app)
    services["scheduler_service"].start()
    atexit.register(shutdown_services, app)
    logger.info("Scheduler service started successfully")


def shutdown_services(app, timeout=None):
    """Stop scheduling and drain in-flight scans"""
    services = get_services(app)
    services["scheduler_service"].shutdown(wait=False)
    return services["dispatch_queue"].shutdown(wait=True, timeout=timeout)


def create_app(config_class=None, executor=None, clock=None):
    """
    Application factory pattern for Flask app creation

    Args:
        config_class: Configuration class (default: from FLASK_ENV)
        executor: ScanExecutor override, mainly for tests
        clock: Scheduler clock override, mainly for tests

    Returns:
        Flask: Configured Flask application
    """
    app = Flask(__name__)
    app.config.from_object(config_class or get_config())
    app.config.from_prefixed_env()

    setup_logging(
        app=app,
        log_level=app.config["LOG_LEVEL"],
        log_dir=app.config["LOG_DIR"],
        to_files=app.config.get("LOG_TO_FILES", True),
    )

    services = build_services(app.config, executor=executor, clock=clock)
    app.extensions[EXTENSION_KEY] = services

    schedules_file = app.config.get("SCHEDULES_FILE")
    if schedules_file:
        if Path(schedules_file).exists():
            services["scheduler"].import_schedules(load_schedules_file(schedules_file))
        else:
            logger.warning(f"Schedules file {schedules_file} not found, starting empty")

    # Only the serving process runs the loop, not the reloader parent or CLI commands
    if app.config.get("SCHEDULER_AUTOSTART") and os.environ.get("WERKZEUG_RUN_MAIN") == "true":
        try:
            start_background(app)
        except Exception as e:
            logger.error(f"Failed to start scheduler: {str(e)}")

    from netdelta.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    register_commands(app)

    return app


def register_commands(app):
    @app.cli.command()
    def list_jobs():
        """List the background scheduler's jobs"""
        jobs = get_services(app)["scheduler_service"].get_all_jobs()
        for job in jobs:
            click.echo(f"Job: {job['name']} - Next run: {job['next_run_time']}")

    @app.cli.command()
    def list_schedules():
        """List all scheduled scans"""
        scans = get_services(app)["scheduler"].get_scheduled_scans()
        if not scans:
            click.echo("No scheduled scans.")
        for scan in scans:
            click.echo(
                f"{scan.id}  {scan.name}  [{scan.state.value}]  "
                f"every {scan.recurrence.interval}  next run: {scan.next_run}"
            )

    @app.cli.command()
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def import_schedules(path):
        """Import scheduled scans from a YAML file into SCHEDULES_FILE"""
        scheduler = get_services(app)["scheduler"]
        definitions = load_schedules_file(path)
        created = scheduler.import_schedules(definitions)
        click.echo(f"Imported {len(created)} of {len(definitions)} scheduled scans")

        schedules_file = app.config.get("SCHEDULES_FILE")
        if schedules_file:
            dump_schedules_file(scheduler.export_schedules(), schedules_file)
            click.echo(f"Saved schedules to {schedules_file}")
        else:
            click.echo("SCHEDULES_FILE is not set; imported schedules were only validated")

    @app.cli.command()
    @click.argument("path", type=click.Path(dir_okay=False))
    def export_schedules(path):
        """Export scheduled scans to a YAML file"""
        definitions = get_services(app)["scheduler"].export_schedules()
        dump_schedules_file(definitions, path)
        click.echo(f"Exported {len(definitions)} scheduled scans to {path}")

    @app.cli.command()
    def scheduler_metrics():
        """Show scheduler metrics"""
        metrics = get_services(app)["scheduler"].get_metrics().to_dict()
        for key, value in metrics.items():
            click.echo(f"{key}: {value}")
