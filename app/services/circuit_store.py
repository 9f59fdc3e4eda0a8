"""
Circuit store boundary.

The deletion engine never talks to the database directly. It asks a
CircuitStore how many documents / steps / approvals / transitions reference
a circuit and asks it to remove those rows. SqlCircuitStore answers with
real referential queries over Flask-SQLAlchemy; tests inject doubles.

Rules:
    - Count methods are read-only.
    - Removal methods only stage statements; commit() / rollback() close the
      per-circuit unit of work.
    - Store errors propagate as-is; the engine decides what they mean.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update

from app.models import db
from app.models.circuit import Circuit, CircuitBackup, Status, Step, Transition
from app.models.document import APPROVAL_PENDING, Approval, Document

logger = logging.getLogger(__name__)


class CircuitStore(ABC):
    """Persistence operations the circuit engine depends on."""

    #: Whether count/removal calls may run from several threads at once.
    thread_safe = False

    # ── Dependency counts ──────────────────────────────────────────────

    @abstractmethod
    def count_live_documents(self, circuit_id: int) -> int:
        """Documents assigned to the circuit and not yet completed."""

    @abstractmethod
    def count_steps(self, circuit_id: int) -> int:
        """Steps owned by the circuit."""

    @abstractmethod
    def count_pending_approvals(self, circuit_id: int) -> int:
        """Unresolved approvals gating documents inside the circuit."""

    @abstractmethod
    def count_transitions(self, circuit_id: int) -> int:
        """Transitions defined between the circuit's statuses."""

    # ── Removal (cascade order: transitions, approvals, steps, circuit) ─

    @abstractmethod
    def delete_transitions(self, circuit_id: int) -> int: ...

    @abstractmethod
    def delete_approvals(self, circuit_id: int) -> int: ...

    @abstractmethod
    def delete_steps(self, circuit_id: int) -> int: ...

    @abstractmethod
    def delete_circuit(self, circuit_id: int) -> None:
        """Remove the circuit record. Must fail if steps or transitions remain."""

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    # ── Activation & backups ───────────────────────────────────────────

    @abstractmethod
    def set_active(self, circuit_id: int, is_active: bool, *, archive: bool = False) -> None: ...

    @abstractmethod
    def save_backup(self, filename: str, size: str, circuit_count: int, payload: str) -> None: ...


class SqlCircuitStore(CircuitStore):
    """CircuitStore over a SQLAlchemy session (defaults to ``db.session``).

    One session is shared by every call, so the engine drives this store
    sequentially.
    """

    thread_safe = False

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # ── Dependency counts ──────────────────────────────────────────────

    def _count(self, model, *criteria) -> int:
        stmt = select(func.count(model.id)).where(*criteria)
        return int(self.session.execute(stmt).scalar() or 0)

    def count_live_documents(self, circuit_id: int) -> int:
        return self._count(
            Document,
            Document.circuit_id == circuit_id,
            Document.is_circuit_completed.is_(False),
        )

    def count_steps(self, circuit_id: int) -> int:
        return self._count(Step, Step.circuit_id == circuit_id)

    def count_pending_approvals(self, circuit_id: int) -> int:
        return self._count(
            Approval,
            Approval.circuit_id == circuit_id,
            Approval.status == APPROVAL_PENDING,
        )

    def count_transitions(self, circuit_id: int) -> int:
        return self._count(Transition, Transition.circuit_id == circuit_id)

    # ── Removal ────────────────────────────────────────────────────────

    def delete_transitions(self, circuit_id: int) -> int:
        res = self.session.execute(
            delete(Transition).where(Transition.circuit_id == circuit_id)
        )
        return res.rowcount or 0

    def delete_approvals(self, circuit_id: int) -> int:
        res = self.session.execute(
            delete(Approval).where(Approval.circuit_id == circuit_id)
        )
        return res.rowcount or 0

    def delete_steps(self, circuit_id: int) -> int:
        res = self.session.execute(
            delete(Step).where(Step.circuit_id == circuit_id)
        )
        return res.rowcount or 0

    def delete_circuit(self, circuit_id: int) -> None:
        """Detach documents, drop statuses, then the circuit row.

        Statuses go here because only transitions reference them and
        transitions are gone by the time a cascade reaches this point.
        A plain delete with transitions or steps left over hits the
        foreign keys and raises IntegrityError.
        """
        self.session.execute(
            update(Document)
            .where(Document.circuit_id == circuit_id)
            .values(circuit_id=None)
        )
        self.session.execute(delete(Status).where(Status.circuit_id == circuit_id))
        res = self.session.execute(delete(Circuit).where(Circuit.id == circuit_id))
        if not res.rowcount:
            raise LookupError(f"Circuit {circuit_id} no longer exists")

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ── Activation & backups ───────────────────────────────────────────

    def set_active(self, circuit_id: int, is_active: bool, *, archive: bool = False) -> None:
        values = {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}
        if archive:
            values["archived_at"] = datetime.now(timezone.utc)
        elif is_active:
            values["archived_at"] = None
        res = self.session.execute(
            update(Circuit).where(Circuit.id == circuit_id).values(**values)
        )
        if not res.rowcount:
            raise LookupError(f"Circuit {circuit_id} no longer exists")
        self.session.commit()
        logger.info("Circuit activation changed id=%s is_active=%s archive=%s",
                    circuit_id, is_active, archive)

    def save_backup(self, filename: str, size: str, circuit_count: int, payload: str) -> None:
        backup = CircuitBackup(
            filename=filename,
            size=size,
            circuit_count=circuit_count,
            payload=payload,
        )
        self.session.add(backup)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
