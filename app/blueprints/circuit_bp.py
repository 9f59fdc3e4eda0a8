"""
Circuit Blueprint — circuit administration and lifecycle safety endpoints.

Endpoints:
    GET    /api/v1/circuits                          ?active=true|false
    POST   /api/v1/circuits                          Body: {title, description}
    GET    /api/v1/circuits/<id>                     circuit with steps/statuses/transitions
    POST   /api/v1/circuits/<id>/steps               Body: {title, order_index, ...}
    POST   /api/v1/circuits/<id>/statuses            Body: {title, is_initial, is_final}
    POST   /api/v1/circuits/<id>/transitions         Body: {from_status_id, to_status_id}
    POST   /api/v1/circuits/<id>/documents           Body: {document_key, title}

    POST   /api/v1/circuits/dependencies             Body: {circuit_ids}
    POST   /api/v1/circuits/validate-deletion        Body: {circuit_ids}
    POST   /api/v1/circuits/bulk-delete              Body: {circuit_ids, options}
           200 success/partial, 409 denied, 422 every circuit failed.
    POST   /api/v1/circuits/<id>/archive             Body: {force}
    GET    /api/v1/circuits/<id>/can-deactivate
    POST   /api/v1/circuits/<id>/toggle-activation

    GET    /api/v1/circuits/backups
    GET    /api/v1/circuits/backups/<filename>       JSON download

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - NO db.session calls here; writes belong to circuit_service and the
      circuit store.
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.services import circuit_service
from app.services.circuit_deletion import (
    OUTCOME_DENIED,
    OUTCOME_FAILURE,
    DeleteOptions,
)
from app.services.circuit_lifecycle import CircuitLifecycleService
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

circuit_bp = Blueprint("circuits", __name__, url_prefix="/api/v1")


# ── Error handlers ─────────────────────────────────────────────────────────────


@circuit_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": str(error)}), 404


@circuit_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 422


@circuit_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"error": str(error)}), 409


@circuit_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in circuit_bp endpoint=%s", request.endpoint)
    return jsonify({"error": "Internal server error"}), 500


# ── Helpers ────────────────────────────────────────────────────────────────────


def _lifecycle() -> CircuitLifecycleService:
    return CircuitLifecycleService.for_app(current_app)


def _parse_circuit_ids(data: dict):
    """Return (ids, None) or (None, error_response)."""
    ids = data.get("circuit_ids")
    if not isinstance(ids, list) or not ids:
        return None, api_error(E.VALIDATION_REQUIRED, "circuit_ids must be a non-empty list")
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        return None, api_error(E.VALIDATION_INVALID, "circuit_ids must contain integers only")
    return ids, None


def _check_flags(data: dict, names):
    """Return an error response if any present flag is not a JSON boolean."""
    for name in names:
        if name in data and not isinstance(data[name], bool):
            return api_error(E.VALIDATION_INVALID, f"{name} must be a boolean")
    return None


# ── Circuit administration ─────────────────────────────────────────────────────


@circuit_bp.route("/circuits", methods=["GET"])
def list_circuits():
    active = request.args.get("active")
    if active is None:
        flag = None
    elif active.lower() in ("true", "1"):
        flag = True
    elif active.lower() in ("false", "0"):
        flag = False
    else:
        return api_error(E.VALIDATION_INVALID, "active must be true or false")
    circuits = circuit_service.list_circuits(active=flag)
    return jsonify({"items": [c.to_dict() for c in circuits], "total": len(circuits)}), 200


@circuit_bp.route("/circuits", methods=["POST"])
def create_circuit():
    data = request.get_json(silent=True) or {}
    circuit = circuit_service.create_circuit(data)
    return jsonify(circuit.to_dict()), 201


@circuit_bp.route("/circuits/<int:circuit_id>", methods=["GET"])
def get_circuit(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    return jsonify(circuit.to_dict(include_children=True)), 200


@circuit_bp.route("/circuits/<int:circuit_id>/steps", methods=["POST"])
def add_step(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    step = circuit_service.add_step(circuit, request.get_json(silent=True) or {})
    return jsonify(step.to_dict()), 201


@circuit_bp.route("/circuits/<int:circuit_id>/statuses", methods=["POST"])
def add_status(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    status = circuit_service.add_status(circuit, request.get_json(silent=True) or {})
    return jsonify(status.to_dict()), 201


@circuit_bp.route("/circuits/<int:circuit_id>/transitions", methods=["POST"])
def add_transition(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    transition = circuit_service.add_transition(circuit, request.get_json(silent=True) or {})
    return jsonify(transition.to_dict()), 201


@circuit_bp.route("/circuits/<int:circuit_id>/documents", methods=["POST"])
def assign_document(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    doc = circuit_service.assign_document(circuit, request.get_json(silent=True) or {})
    return jsonify(doc.to_dict()), 201


# ── Lifecycle safety ───────────────────────────────────────────────────────────


@circuit_bp.route("/circuits/dependencies", methods=["POST"])
def analyze_dependencies():
    """Read-only dependency report for the given circuits."""
    ids, err = _parse_circuit_ids(request.get_json(silent=True) or {})
    if err:
        return err
    circuit_service.get_circuits(ids)
    analysis = _lifecycle().analyze_dependencies(ids)
    return jsonify(analysis.to_dict()), 200


@circuit_bp.route("/circuits/validate-deletion", methods=["POST"])
def validate_deletion():
    ids, err = _parse_circuit_ids(request.get_json(silent=True) or {})
    if err:
        return err
    circuit_service.get_circuits(ids)
    return jsonify(_lifecycle().validate_deletion(ids).to_dict()), 200


@circuit_bp.route("/circuits/bulk-delete", methods=["POST"])
def bulk_delete():
    """Delete a batch of circuits.

    Body:
        circuit_ids: [int, ...]
        options: {force_delete, cascade_delete, backup_before_delete}

    A denied batch touches nothing and returns 409 with the analysis.
    A partial batch is a 200: the per-circuit errors are in the body.
    """
    data = request.get_json(silent=True) or {}
    ids, err = _parse_circuit_ids(data)
    if err:
        return err
    options = data.get("options")
    if options is not None and not isinstance(options, dict):
        return api_error(E.VALIDATION_INVALID, "options must be an object")
    err = _check_flags(options or {}, DeleteOptions.FLAGS)
    if err:
        return err

    circuits = circuit_service.get_circuits(ids)
    result = _lifecycle().delete_circuits(circuits, DeleteOptions.from_dict(options))

    if result.outcome == OUTCOME_DENIED:
        status = 409
    elif result.outcome == OUTCOME_FAILURE:
        status = 422
    else:
        status = 200
    return jsonify(result.to_dict()), status


@circuit_bp.route("/circuits/<int:circuit_id>/archive", methods=["POST"])
def archive_circuit(circuit_id: int):
    data = request.get_json(silent=True) or {}
    err = _check_flags(data, ("force",))
    if err:
        return err
    circuit = circuit_service.get_circuit(circuit_id)
    check = _lifecycle().archive_circuit(circuit, force=data.get("force", False))
    if not check.allowed:
        return jsonify({
            "error": check.reason,
            "code": E.CONFLICT_STATE,
            "document_count": check.document_count,
        }), 409
    circuit = circuit_service.get_circuit(circuit_id)
    return jsonify({"circuit": circuit.to_dict(), "warning": check.reason}), 200


@circuit_bp.route("/circuits/<int:circuit_id>/can-deactivate", methods=["GET"])
def can_deactivate(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    return jsonify(_lifecycle().can_deactivate(circuit).to_dict()), 200


@circuit_bp.route("/circuits/<int:circuit_id>/toggle-activation", methods=["POST"])
def toggle_activation(circuit_id: int):
    circuit = circuit_service.get_circuit(circuit_id)
    result, err_dict = circuit_service.toggle_activation(circuit, _lifecycle())
    if err_dict:
        status = err_dict.pop("status", 409)
        return jsonify(err_dict), status
    return jsonify(result), 200


# ── Backups ────────────────────────────────────────────────────────────────────


@circuit_bp.route("/circuits/backups", methods=["GET"])
def list_backups():
    backups = circuit_service.list_backups()
    return jsonify({"items": backups, "total": len(backups)}), 200


@circuit_bp.route("/circuits/backups/<filename>", methods=["GET"])
def download_backup(filename: str):
    backup = circuit_service.get_backup(filename)
    return Response(
        backup.payload,
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename={backup.filename}"},
    )
