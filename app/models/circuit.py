"""
Circuit Lifecycle Platform
Circuit domain models.

Models:
    - Circuit: named workflow definition documents move through
    - Step: one ordered stage of a circuit (order_index unique per circuit)
    - Status: a named point a document can occupy within a circuit
    - Transition: directed edge between two statuses of the same circuit
    - CircuitBackup: JSON capture of circuits taken before a destructive run

Foreign keys are declared without ON DELETE rules on purpose: the deletion
engine removes dependents explicitly (transitions → approvals → steps →
circuit) and a plain delete must fail while dependents still exist.
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Circuit ──────────────────────────────────────────────────────────────────


class Circuit(db.Model):
    """
    Workflow circuit.

    Lifecycle: created by an administrator, mutated by edits and
    activation toggles, destroyed only through the deletion engine
    (app.services.circuit_deletion).
    """

    __tablename__ = "circuits"

    id = db.Column(db.Integer, primary_key=True)
    circuit_key = db.Column(
        db.String(20), nullable=False, unique=True,
        comment="CR + zero-padded sequence, e.g. CR07",
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "Step", backref="circuit", lazy="dynamic", order_by="Step.order_index",
    )
    statuses = db.relationship("Status", backref="circuit", lazy="dynamic")
    transitions = db.relationship("Transition", backref="circuit", lazy="dynamic")

    @property
    def is_archived(self):
        return self.archived_at is not None

    def to_dict(self, include_children=False):
        """Serialize circuit to dictionary."""
        result = {
            "id": self.id,
            "circuit_key": self.circuit_key,
            "title": self.title,
            "description": self.description,
            "is_active": self.is_active,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            result["steps"] = [s.to_dict() for s in self.steps]
            result["statuses"] = [s.to_dict() for s in self.statuses]
            result["transitions"] = [t.to_dict() for t in self.transitions]
        return result

    def __repr__(self):
        return f"<Circuit {self.id}: {self.circuit_key}>"


# ── Step ─────────────────────────────────────────────────────────────────────


class Step(db.Model):
    """Ordered stage of a circuit, owned exclusively by it."""

    __tablename__ = "circuit_steps"

    id = db.Column(db.Integer, primary_key=True)
    step_key = db.Column(db.String(40), nullable=False)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id"), nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    order_index = db.Column(db.Integer, nullable=False)
    is_final_step = db.Column(db.Boolean, nullable=False, default=False)
    responsible_role_id = db.Column(
        db.Integer, nullable=True,
        comment="Role reference owned by the identity service",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("circuit_id", "order_index", name="uq_step_circuit_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "step_key": self.step_key,
            "circuit_id": self.circuit_id,
            "title": self.title,
            "order_index": self.order_index,
            "is_final_step": self.is_final_step,
            "responsible_role_id": self.responsible_role_id,
        }

    def __repr__(self):
        return f"<Step {self.id}: {self.step_key} #{self.order_index}>"


# ── Status / Transition ──────────────────────────────────────────────────────


class Status(db.Model):
    """Named point within a circuit. At most one initial and one final."""

    __tablename__ = "circuit_statuses"

    id = db.Column(db.Integer, primary_key=True)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id"), nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    is_initial = db.Column(db.Boolean, nullable=False, default=False)
    is_final = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "circuit_id": self.circuit_id,
            "title": self.title,
            "is_initial": self.is_initial,
            "is_final": self.is_final,
        }


class Transition(db.Model):
    """Directed edge between two statuses of the same circuit."""

    __tablename__ = "circuit_transitions"

    id = db.Column(db.Integer, primary_key=True)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id"), nullable=False, index=True,
    )
    from_status_id = db.Column(
        db.Integer, db.ForeignKey("circuit_statuses.id"), nullable=False,
    )
    to_status_id = db.Column(
        db.Integer, db.ForeignKey("circuit_statuses.id"), nullable=False,
    )

    __table_args__ = (
        db.UniqueConstraint("from_status_id", "to_status_id", name="uq_transition_edge"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "circuit_id": self.circuit_id,
            "from_status_id": self.from_status_id,
            "to_status_id": self.to_status_id,
        }


# ── Backup ───────────────────────────────────────────────────────────────────


class CircuitBackup(db.Model):
    """
    Best-effort JSON capture of circuits taken before a bulk delete.

    The payload is opaque to the deletion engine; only filename, size
    and timestamp travel back to the caller.
    """

    __tablename__ = "circuit_backups"

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(120), nullable=False, unique=True)
    size = db.Column(db.String(20), nullable=False, comment="Approximate size, e.g. 3KB")
    circuit_count = db.Column(db.Integer, nullable=False, default=0)
    payload = db.Column(db.Text, nullable=False, comment="JSON document")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        """Serialize metadata only; the payload is served separately."""
        return {
            "id": self.id,
            "filename": self.filename,
            "size": self.size,
            "circuit_count": self.circuit_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
