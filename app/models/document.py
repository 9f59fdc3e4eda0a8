"""
Circuit Lifecycle Platform
Document-side models observed by the circuit engine.

Models:
    - Document: external entity assigned to a circuit while in progress
    - Approval: pending decision gating a document's progress through a step

The engine never owns these rows. It counts them as dependencies, detaches
documents from a removed circuit and, only under force, removes approvals.
"""

from datetime import datetime, timezone

from app.models import db

APPROVAL_PENDING = "pending"
VALID_APPROVAL_STATUSES = frozenset({APPROVAL_PENDING, "approved", "rejected"})


class Document(db.Model):
    """Document assignment. Live while assigned and not completed."""

    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    document_key = db.Column(db.String(40), nullable=False, unique=True)
    title = db.Column(db.String(255), nullable=False)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id"), nullable=True, index=True,
    )
    is_circuit_completed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_key": self.document_key,
            "title": self.title,
            "circuit_id": self.circuit_id,
            "is_circuit_completed": self.is_circuit_completed,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.document_key}>"


class Approval(db.Model):
    """Decision gating a document at a step. Only ``pending`` blocks deletion."""

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id"), nullable=False, index=True,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("circuit_steps.id"), nullable=False,
    )
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id"), nullable=False,
    )
    status = db.Column(
        db.String(20), nullable=False, default=APPROVAL_PENDING,
        comment="pending | approved | rejected",
    )
    requested_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "circuit_id": self.circuit_id,
            "step_id": self.step_id,
            "document_id": self.document_id,
            "status": self.status,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
        }
