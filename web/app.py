"""Flask JSON API over the fleet scheduling core."""

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from models import (
    AssignmentStatus,
    BlockStatus,
    ConflictError,
    FleetError,
    InvalidStateError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from scheduling import (
    AssignmentScheduler,
    FleetStatusReader,
    LoggingSink,
    YamlRepository,
    retry_transient,
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateError, 409),
    (TransactionError, 503),
]


def _time(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def vehicle_json(vehicle) -> Dict[str, Any]:
    return {
        "id": vehicle.id,
        "plateNumber": vehicle.plate_number,
        "model": vehicle.model,
        "year": vehicle.year,
        "odometerKm": vehicle.odometer_km,
        "status": vehicle.status.value,
    }


def assignment_json(assignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "vehicleId": assignment.vehicle_id,
        "driverId": assignment.driver_id,
        "startTime": _time(assignment.start_time),
        "endTime": _time(assignment.end_time),
        "reason": assignment.reason,
        "status": assignment.status.value,
        "assignedBy": assignment.assigned_by,
        "closedBy": assignment.closed_by,
        "closedAt": _time(assignment.closed_at),
        "cancelReason": assignment.cancel_reason,
    }


def block_json(block) -> Dict[str, Any]:
    return {
        "id": block.id,
        "vehicleId": block.vehicle_id,
        "startTime": _time(block.start_time),
        "endTime": _time(block.end_time),
        "reason": block.reason,
        "status": block.status.value,
        "blockedBy": block.blocked_by,
        "closedBy": block.closed_by,
        "closedAt": _time(block.closed_at),
    }


def document_view_json(view) -> Dict[str, Any]:
    doc = view.document
    return {
        "id": doc.id,
        "name": doc.display_name,
        "owner": {"type": doc.owner_type, "id": doc.owner_id},
        "type": doc.type,
        "issueDate": doc.issue_date.isoformat(),
        "expiryDate": doc.expiry_date.isoformat(),
        "status": view.status.name.lower(),
        "daysRemaining": view.days_remaining,
    }


def service_view_json(view) -> Dict[str, Any]:
    record = view.record
    return {
        "id": record.id,
        "vehicleId": record.vehicle_id,
        "lastServiceKm": record.last_service_km,
        "currentKm": view.current_km,
        "nextServiceKm": record.next_service_km,
        "kmRemaining": view.km_remaining,
        "serviceDate": record.service_date.isoformat(),
        "status": view.status.name.lower(),
    }


def calendar_event_json(event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "type": event.type,
        "vehicleId": event.vehicle_id,
        "driverId": event.driver_id,
        "start": _time(event.start),
        "end": _time(event.end),
        "reason": event.reason,
    }


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _required(data: Dict[str, Any], key: str):
    value = data.get(key)
    if value in (None, ""):
        raise ValidationError(f"Missing required field '{key}'")
    return value


def _number(data: Dict[str, Any], key: str) -> float:
    value = _required(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Field '{key}' must be a number")
    return value


def _status_arg(enum_cls):
    value = request.args.get("status")
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown status '{value}'")


def create_app(repository=None, clock=None, sink=None) -> Flask:
    """
    Build the Flask app.

    Without a repository the app opens the fleet file named by FLEET_FILE
    (default fleet.yaml) with FLEET_* environment overrides applied.
    """
    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "dev-key-change-in-production")

    if repository is None:
        repository = YamlRepository(os.environ.get("FLEET_FILE", "fleet.yaml"), apply_env=True)
    scheduler = AssignmentScheduler(repository, clock=clock, sink=sink or LoggingSink())
    reader = FleetStatusReader(repository, clock=scheduler.clock)
    app.config["SCHEDULER"] = scheduler
    app.config["READER"] = reader

    def actor() -> Optional[str]:
        return request.headers.get("X-Actor") or None

    @app.errorhandler(FleetError)
    def handle_fleet_error(error: FleetError):
        code = 500
        for cls, status_code in ERROR_STATUS_CODES:
            if isinstance(error, cls):
                code = status_code
                break
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, error)
        return jsonify({"error": error.kind, "message": str(error)}), code

    # -------------------------------------------------------------------------
    # Vehicles
    # -------------------------------------------------------------------------

    @app.route("/vehicles")
    def list_vehicles():
        # Block boundaries move with the clock alone.
        vehicles = retry_transient(scheduler.refresh_all)
        return jsonify([vehicle_json(v) for v in vehicles])

    @app.route("/vehicles/refresh", methods=["POST"])
    def refresh_vehicles():
        """Recompute every vehicle status against the current time."""
        vehicles = retry_transient(scheduler.refresh_all)
        return jsonify([vehicle_json(v) for v in vehicles])

    @app.route("/vehicles/<vehicle_id>/assignments")
    def vehicle_assignments(vehicle_id: str):
        status = _status_arg(AssignmentStatus)
        assignments = scheduler.assignments_for_vehicle(vehicle_id, status)
        return jsonify([assignment_json(a) for a in assignments])

    @app.route("/vehicles/<vehicle_id>/blocks")
    def vehicle_blocks(vehicle_id: str):
        status = _status_arg(BlockStatus)
        blocks = scheduler.blocks_for_vehicle(vehicle_id, status)
        return jsonify([block_json(b) for b in blocks])

    @app.route("/vehicles/<vehicle_id>/odometer", methods=["POST"])
    def update_odometer(vehicle_id: str):
        km = _number(_body(), "odometerKm")
        vehicle = retry_transient(lambda: repository.update_odometer(vehicle_id, km))
        return jsonify(vehicle_json(vehicle))

    @app.route("/vehicles/<vehicle_id>/service", methods=["POST"])
    def log_service(vehicle_id: str):
        """Record a service; the next one defaults to one interval later."""
        data = _body()
        km = _number(data, "serviceKm")
        next_km = _number(data, "nextServiceKm") if data.get("nextServiceKm") is not None else None
        service_date = data.get("serviceDate") or scheduler.clock.now().date().isoformat()
        record = retry_transient(
            lambda: repository.record_service(vehicle_id, km, service_date, next_service_km=next_km)
        )
        return jsonify(service_view_json(reader.service_status(record.id))), 201

    @app.route("/drivers/<driver_id>/assignments")
    def driver_assignments(driver_id: str):
        status = _status_arg(AssignmentStatus)
        assignments = scheduler.assignments_for_driver(driver_id, status)
        return jsonify([assignment_json(a) for a in assignments])

    # -------------------------------------------------------------------------
    # Assignments
    # -------------------------------------------------------------------------

    @app.route("/assignments", methods=["POST"])
    def create_assignment():
        data = _body()
        vehicle_id = str(_required(data, "vehicleId"))
        driver_id = str(_required(data, "driverId"))
        start = _required(data, "startTime")
        end = _required(data, "endTime")
        assignment = retry_transient(
            lambda: scheduler.create_assignment(
                vehicle_id, driver_id, start, end, data.get("reason") or "", actor=actor()
            )
        )
        return jsonify(assignment_json(assignment)), 201

    @app.route("/assignments/<assignment_id>")
    def get_assignment(assignment_id: str):
        return jsonify(assignment_json(scheduler.get_assignment(assignment_id)))

    @app.route("/assignments/<assignment_id>/complete", methods=["POST"])
    def complete_assignment(assignment_id: str):
        completion_time = _body().get("completionTime")
        assignment = retry_transient(
            lambda: scheduler.complete_assignment(assignment_id, completion_time, actor=actor())
        )
        return jsonify(assignment_json(assignment))

    @app.route("/assignments/<assignment_id>/cancel", methods=["POST"])
    def cancel_assignment(assignment_id: str):
        reason = _body().get("reason")
        assignment = retry_transient(
            lambda: scheduler.cancel_assignment(assignment_id, reason, actor=actor())
        )
        return jsonify(assignment_json(assignment))

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    @app.route("/blocks", methods=["POST"])
    def create_block():
        data = _body()
        vehicle_id = str(_required(data, "vehicleId"))
        start = _required(data, "startTime")
        end = _required(data, "endTime")
        block = retry_transient(
            lambda: scheduler.create_block(
                vehicle_id, start, end, data.get("reason") or "", actor=actor()
            )
        )
        return jsonify(block_json(block)), 201

    @app.route("/blocks/<block_id>/complete", methods=["POST"])
    def complete_block(block_id: str):
        completion_time = _body().get("completionTime")
        block = retry_transient(
            lambda: scheduler.complete_block(block_id, completion_time, actor=actor())
        )
        return jsonify(block_json(block))

    # -------------------------------------------------------------------------
    # Read-side status
    # -------------------------------------------------------------------------

    @app.route("/calendar")
    def calendar():
        start = request.args.get("start")
        end = request.args.get("end")
        if not start or not end:
            raise ValidationError("Query parameters 'start' and 'end' are required")
        events = reader.calendar_events(start, end, request.args.get("vehicle") or None)
        return jsonify([calendar_event_json(e) for e in events])

    @app.route("/documents")
    def documents():
        views = reader.documents_with_status(
            request.args.get("owner_type") or None, request.args.get("owner_id") or None
        )
        return jsonify([document_view_json(v) for v in views])

    @app.route("/documents/expiring")
    def expiring_documents():
        days = request.args.get("days")
        try:
            threshold = float(days) if days else None
        except ValueError:
            raise ValidationError(f"Invalid day count '{days}'")
        views = reader.expiring_documents(threshold)
        return jsonify([document_view_json(v) for v in views])

    @app.route("/service")
    def service():
        views = reader.services_with_status(request.args.get("vehicle") or None)
        return jsonify([service_view_json(v) for v in views])

    @app.route("/service/due")
    def service_due():
        return jsonify([service_view_json(v) for v in reader.vehicles_due_for_service()])

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app().run(debug=True, host="0.0.0.0", port=5001)
