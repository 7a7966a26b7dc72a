"""
API routes for scheduled scans, ad-hoc scans, snapshots and diffs
"""

import uuid

from flask import Blueprint, current_app, jsonify, request

from netdelta.exceptions import (
    CapacityError,
    ExecutionError,
    NetDeltaError,
    NotFoundError,
    ScheduleBusyError,
    ValidationError,
)
from netdelta.models.scan import ScanConfig

bp = Blueprint("api", __name__)

ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ScheduleBusyError, 409),
    (CapacityError, 503),
    (ExecutionError, 502),
)

# Request body keys accepted by PATCH /schedules/<id>
PATCH_FIELDS = {
    "name": "name",
    "description": "description",
    "tags": "tags",
    "scan": "scan_config",
    "recurrence": "recurrence",
    "priority": "priority",
    "retries": "retries",
    "enabled": "enabled",
}


def _services():
    return current_app.extensions["netdelta"]


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _timeout_arg(data):
    timeout = data.get("timeout", request.args.get("timeout"))
    if timeout is None:
        return None
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise ValidationError("timeout must be a number")
    if timeout <= 0:
        raise ValidationError("timeout must be positive")
    return timeout


@bp.errorhandler(NetDeltaError)
def handle_netdelta_error(error):
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            break
    else:
        status = 500

    if status >= 500:
        current_app.logger.error(f"{request.method} {request.path} failed: {error}")
    else:
        current_app.logger.info(f"{request.method} {request.path} rejected: {error}")

    return jsonify({"status": "error", "message": str(error)}), status


# ============== SCHEDULED SCANS ==============


@bp.route("/schedules", methods=["GET"])
def list_schedules():
    """List scheduled scans, optionally filtered by ?enabled=true|false"""
    scans = _services()["scheduler"].get_scheduled_scans()

    enabled = request.args.get("enabled")
    if enabled is not None:
        scans = [s for s in scans if s.enabled == (enabled.lower() == "true")]

    return (
        jsonify(
            {
                "status": "success",
                "total": len(scans),
                "schedules": [scan.to_dict() for scan in scans],
            }
        ),
        200,
    )


@bp.route("/schedules", methods=["POST"])
def create_schedule():
    """Create a scheduled scan from a schedule definition"""
    scheduler = _services()["scheduler"]
    scan_id = scheduler.create_from_definition(_json_body())
    scan = scheduler.get_scheduled_scan(scan_id)

    return (
        jsonify(
            {
                "status": "success",
                "message": "Scheduled scan created successfully",
                "schedule": scan.to_dict(),
            }
        ),
        201,
    )


@bp.route("/schedules/<scan_id>", methods=["GET"])
def get_schedule(scan_id):
    scheduler = _services()["scheduler"]
    schedule = scheduler.get_scheduled_scan(scan_id).to_dict()
    schedule["recent_executions"] = [
        e.to_dict() for e in scheduler.get_executions(scan_id, limit=10)
    ]
    return jsonify({"status": "success", "schedule": schedule}), 200


@bp.route("/schedules/<scan_id>", methods=["PATCH"])
def update_schedule(scan_id):
    data = _json_body()
    unknown = set(data) - set(PATCH_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    scheduler = _services()["scheduler"]
    scheduler.update_scheduled_scan(
        scan_id, **{PATCH_FIELDS[key]: value for key, value in data.items()}
    )
    return (
        jsonify(
            {
                "status": "success",
                "message": "Scheduled scan updated successfully",
                "schedule": scheduler.get_scheduled_scan(scan_id).to_dict(),
            }
        ),
        200,
    )


@bp.route("/schedules/<scan_id>", methods=["DELETE"])
def delete_schedule(scan_id):
    _services()["scheduler"].delete_scheduled_scan(scan_id)
    return (
        jsonify({"status": "success", "message": "Scheduled scan deleted successfully"}),
        200,
    )


@bp.route("/schedules/<scan_id>/enable", methods=["POST"])
def enable_schedule(scan_id):
    scheduler = _services()["scheduler"]
    scheduler.enable_scheduled_scan(scan_id)
    return (
        jsonify(
            {"status": "success", "schedule": scheduler.get_scheduled_scan(scan_id).to_dict()}
        ),
        200,
    )


@bp.route("/schedules/<scan_id>/disable", methods=["POST"])
def disable_schedule(scan_id):
    scheduler = _services()["scheduler"]
    scheduler.disable_scheduled_scan(scan_id)
    return (
        jsonify(
            {"status": "success", "schedule": scheduler.get_scheduled_scan(scan_id).to_dict()}
        ),
        200,
    )


@bp.route("/schedules/<scan_id>/run", methods=["POST"])
def run_schedule(scan_id):
    """Run a scheduled scan now and wait for the result"""
    timeout = _timeout_arg(_json_body())
    execution = _services()["scheduler"].execute_schedule_now(scan_id, timeout=timeout)
    return jsonify({"status": "success", "execution": execution.to_dict()}), 200


@bp.route("/schedules/<scan_id>/executions", methods=["GET"])
def list_schedule_executions(scan_id):
    limit = request.args.get("limit", 10, type=int)
    executions = _services()["scheduler"].get_executions(scan_id, limit=limit)
    return (
        jsonify({"status": "success", "executions": [e.to_dict() for e in executions]}),
        200,
    )


# ============== AD-HOC SCANS ==============


@bp.route("/scans", methods=["POST"])
def run_scan():
    """Run an ad-hoc scan through the dispatch queue and wait for the result"""
    data = _json_body()
    config = ScanConfig.from_dict(data.get("scan", data))
    request_id = data.get("request_id") or f"adhoc-{uuid.uuid4().hex[:12]}"
    scan_request = config.to_request(request_id, priority=data.get("priority"))

    execution = _services()["scheduler"].execute_request(
        scan_request, timeout=_timeout_arg(data)
    )
    return jsonify({"status": "success", "execution": execution.to_dict()}), 200


@bp.route("/executions", methods=["GET"])
def list_executions():
    limit = request.args.get("limit", 10, type=int)
    executions = _services()["scheduler"].get_executions(limit=limit)
    return (
        jsonify({"status": "success", "executions": [e.to_dict() for e in executions]}),
        200,
    )


@bp.route("/scheduler/metrics", methods=["GET"])
def scheduler_metrics():
    services = _services()
    return (
        jsonify(
            {
                "status": "success",
                "metrics": services["scheduler"].get_metrics().to_dict(),
                "queue": services["dispatch_queue"].get_queue_status(),
                "running": services["scheduler_service"].running,
            }
        ),
        200,
    )


# ============== SNAPSHOTS AND DIFFS ==============


@bp.route("/snapshots", methods=["GET"])
def list_snapshots():
    limit = request.args.get("limit", 20, type=int)
    snapshots = _services()["snapshot_store"].list_snapshots(limit=limit)
    return (
        jsonify({"status": "success", "snapshots": [s.to_dict() for s in snapshots]}),
        200,
    )


@bp.route("/snapshots/latest", methods=["GET"])
def latest_snapshot():
    snapshot = _services()["snapshot_store"].load_latest()
    if snapshot is None:
        raise NotFoundError("snapshot", "latest")

    include_devices = request.args.get("include_devices", "true").lower() == "true"
    return (
        jsonify({"status": "success", "snapshot": snapshot.to_dict(include_devices)}),
        200,
    )


@bp.route("/snapshots/<snapshot_id>", methods=["GET"])
def get_snapshot(snapshot_id):
    snapshot = _services()["snapshot_store"].get(snapshot_id)
    if snapshot is None:
        raise NotFoundError("snapshot", snapshot_id)
    return jsonify({"status": "success", "snapshot": snapshot.to_dict(True)}), 200


def _diff_response(diff):
    delta_service = _services()["delta_service"]
    return (
        jsonify(
            {
                "status": "success",
                "diff": diff.to_dict(),
                "summary_text": delta_service.summarize_diff(diff),
                "severity": delta_service.get_change_severity(diff),
            }
        ),
        200,
    )


@bp.route("/diff/latest", methods=["GET"])
def latest_diff():
    diff = _services()["monitor"].latest_diff
    if diff is None:
        raise NotFoundError("diff", "latest")
    return _diff_response(diff)


@bp.route("/diff", methods=["POST"])
def diff_snapshots():
    """Diff two stored snapshots: {"from": <id>, "to": <id>}"""
    data = _json_body()
    if not data.get("from") or not data.get("to"):
        raise ValidationError("Both 'from' and 'to' snapshot IDs are required")

    diff = _services()["monitor"].diff_snapshots(data["from"], data["to"])
    return _diff_response(diff)
