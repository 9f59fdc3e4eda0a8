"""Circuit administration service layer.

Creation and editing of circuits, their steps, statuses and transitions,
document assignment, activation toggling and backup lookup. Destructive
lifecycle operations (bulk delete, archive) live in circuit_lifecycle.

Rules:
  - db.session.commit() happens only in this file and in the circuit store.
  - Business-rule violations raise app.core.exceptions types; the circuit
    blueprint maps them to HTTP responses.
  - toggle_activation returns (result, None) / (None, error_dict) so the
    guard's refusal is a value, not an exception.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.circuit import Circuit, CircuitBackup, Status, Step, Transition
from app.models.document import Document

logger = logging.getLogger(__name__)

CIRCUIT_KEY_PREFIX = "CR"


def _next_circuit_key() -> str:
    """``CR`` + zero-padded sequence, skipping keys already taken."""
    counter = (db.session.execute(select(func.count(Circuit.id))).scalar() or 0) + 1
    while True:
        key = f"{CIRCUIT_KEY_PREFIX}{counter:02d}"
        taken = db.session.execute(
            select(Circuit.id).where(Circuit.circuit_key == key)
        ).first()
        if taken is None:
            return key
        counter += 1


def _require_title(data: dict) -> str:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required.")
    if len(title) > 200:
        raise ValidationError("title must be 200 characters or fewer.")
    return title


# ── Circuits ──────────────────────────────────────────────────────────────────


def create_circuit(data: dict) -> Circuit:
    """Create an active circuit with a generated ``CRnn`` key.

    Raises:
        ValidationError: If the title is missing or too long.
    """
    circuit = Circuit(
        circuit_key=_next_circuit_key(),
        title=_require_title(data),
        description=(data.get("description") or "").strip(),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(circuit)
    db.session.commit()
    logger.info("Circuit created id=%s key=%s", circuit.id, circuit.circuit_key,
                extra={"circuit_id": circuit.id, "event_type": "circuit.create"})
    return circuit


def list_circuits(active: bool | None = None) -> list[Circuit]:
    stmt = select(Circuit).order_by(Circuit.id)
    if active is not None:
        stmt = stmt.where(Circuit.is_active.is_(active))
    return list(db.session.execute(stmt).scalars())


def get_circuit(circuit_id: int) -> Circuit:
    circuit = db.session.get(Circuit, circuit_id)
    if circuit is None:
        raise NotFoundError(resource="Circuit", resource_id=circuit_id)
    return circuit


def get_circuits(circuit_ids) -> list[Circuit]:
    """Load circuits in request order; every id must exist.

    Raises:
        NotFoundError: Naming the first missing id.
    """
    ids = list(dict.fromkeys(circuit_ids))
    found = {
        c.id: c
        for c in db.session.execute(select(Circuit).where(Circuit.id.in_(ids))).scalars()
    }
    for cid in ids:
        if cid not in found:
            raise NotFoundError(resource="Circuit", resource_id=cid)
    return [found[cid] for cid in ids]


# ── Steps / statuses / transitions ────────────────────────────────────────────


def add_step(circuit: Circuit, data: dict) -> Step:
    """Append a step. ``order_index`` is unique within the circuit.

    Raises:
        ValidationError: Missing title or a non-integer order_index.
        ConflictError:   order_index already used by another step.
    """
    title = _require_title(data)
    order_index = data.get("order_index")
    if order_index is None:
        current = db.session.execute(
            select(func.max(Step.order_index)).where(Step.circuit_id == circuit.id)
        ).scalar()
        order_index = 1 if current is None else current + 1
    try:
        order_index = int(order_index)
    except (TypeError, ValueError):
        raise ValidationError("order_index must be an integer.")
    if order_index < 1:
        raise ValidationError("order_index must be 1 or greater.")

    clash = db.session.execute(
        select(Step.id).where(Step.circuit_id == circuit.id, Step.order_index == order_index)
    ).first()
    if clash is not None:
        raise ConflictError(resource="Step", field="order_index", value=order_index)

    step = Step(
        circuit_id=circuit.id,
        step_key=f"{circuit.circuit_key}-ST{order_index:02d}",
        title=title,
        order_index=order_index,
        is_final_step=bool(data.get("is_final_step", False)),
        responsible_role_id=data.get("responsible_role_id"),
    )
    db.session.add(step)
    db.session.commit()
    logger.info("Step added circuit=%s order_index=%s", circuit.id, order_index)
    return step


def add_status(circuit: Circuit, data: dict) -> Status:
    """Add a status. At most one initial and one final; never both at once.

    Raises:
        ValidationError: If any of those rules would be broken.
    """
    title = _require_title(data)
    is_initial = bool(data.get("is_initial", False))
    is_final = bool(data.get("is_final", False))
    if is_initial and is_final:
        raise ValidationError("A status cannot be both initial and final.")

    if is_initial and circuit.statuses.filter(Status.is_initial.is_(True)).count():
        raise ValidationError("Circuit already has an initial status.")
    if is_final and circuit.statuses.filter(Status.is_final.is_(True)).count():
        raise ValidationError("Circuit already has a final status.")

    status = Status(circuit_id=circuit.id, title=title, is_initial=is_initial, is_final=is_final)
    db.session.add(status)
    db.session.commit()
    return status


def add_transition(circuit: Circuit, data: dict) -> Transition:
    """Connect two statuses of the same circuit.

    Raises:
        ValidationError: Missing ids, a self-loop, or a status of another circuit.
        ConflictError:   The edge already exists.
    """
    from_id = data.get("from_status_id")
    to_id = data.get("to_status_id")
    if not from_id or not to_id:
        raise ValidationError("from_status_id and to_status_id are required.")
    if from_id == to_id:
        raise ValidationError("A transition must connect two different statuses.")

    for status_id in (from_id, to_id):
        status = db.session.get(Status, status_id)
        if status is None or status.circuit_id != circuit.id:
            raise ValidationError(
                f"Status {status_id} does not belong to circuit {circuit.id}.",
                details={"status_id": status_id},
            )

    exists = db.session.execute(
        select(Transition.id).where(
            Transition.from_status_id == from_id, Transition.to_status_id == to_id,
        )
    ).first()
    if exists is not None:
        raise ConflictError(resource="Transition", field="edge", value=f"{from_id}->{to_id}")

    transition = Transition(circuit_id=circuit.id, from_status_id=from_id, to_status_id=to_id)
    db.session.add(transition)
    db.session.commit()
    return transition


# ── Documents ─────────────────────────────────────────────────────────────────


def assign_document(circuit: Circuit, data: dict) -> Document:
    """Create a document and place it in ``circuit``.

    Only active circuits accept new documents.
    """
    if not circuit.is_active:
        raise ValidationError("Cannot assign documents to an inactive circuit.")
    document_key = (data.get("document_key") or "").strip()
    if not document_key:
        raise ValidationError("document_key is required.")
    exists = db.session.execute(
        select(Document.id).where(Document.document_key == document_key)
    ).first()
    if exists is not None:
        raise ConflictError(resource="Document", field="document_key", value=document_key)

    doc = Document(
        document_key=document_key,
        title=(data.get("title") or document_key).strip(),
        circuit_id=circuit.id,
        is_circuit_completed=bool(data.get("is_circuit_completed", False)),
    )
    db.session.add(doc)
    db.session.commit()
    logger.info("Document %s assigned to circuit=%s", document_key, circuit.id,
                extra={"circuit_id": circuit.id})
    return doc


# ── Activation ────────────────────────────────────────────────────────────────


def toggle_activation(circuit: Circuit, lifecycle) -> tuple[dict | None, dict | None]:
    """Flip ``is_active``. Deactivation goes through the activation guard.

    Returns:
        (circuit_dict, None) on success,
        (None, {"error": ..., "document_count": ..., "status": 409}) when refused.
    """
    circuit_id = circuit.id
    if circuit.is_active:
        check = lifecycle.can_deactivate(circuit)
        if not check.allowed:
            return None, {
                "error": check.reason,
                "document_count": check.document_count,
                "status": 409,
            }
        lifecycle.store.set_active(circuit_id, False)
    else:
        lifecycle.store.set_active(circuit_id, True)

    circuit = db.session.get(Circuit, circuit_id, populate_existing=True)
    return circuit.to_dict(), None


# ── Backups ───────────────────────────────────────────────────────────────────


def list_backups() -> list[dict]:
    stmt = select(CircuitBackup).order_by(CircuitBackup.created_at.desc(), CircuitBackup.id.desc())
    return [b.to_dict() for b in db.session.execute(stmt).scalars()]


def get_backup(filename: str) -> CircuitBackup:
    backup = db.session.execute(
        select(CircuitBackup).where(CircuitBackup.filename == filename)
    ).scalar_one_or_none()
    if backup is None:
        raise NotFoundError(resource="CircuitBackup", resource_id=filename)
    return backup
