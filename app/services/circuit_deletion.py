"""
Circuit deletion engine.

    DeletionPolicy           allow/deny verdict for a whole batch
    CascadeDeleter           removes one circuit and its dependents
    BulkDeletionCoordinator  runs a batch, isolating per-circuit failures

Flow for a batch:
    1. Policy on the union of circuit ids. Denied → return, nothing touched.
    2. Optional backup. A failure only adds a warning.
    3. One isolated delete per circuit (cascade or plain).
    4. Aggregate into DeletionResult: deleted_count + failed_count always
       equals the number of circuits submitted once step 3 has started.

There is no cross-circuit transaction. A partially completed batch is a
valid terminal state that callers report, not an error to recover from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.core.exceptions import BackupError, DeleteFailure
from app.services.circuit_backup import BackupSnapshot, BackupSnapshotter
from app.services.circuit_dependency import DependencyAnalysisResult, DependencyAnalyzer
from app.services.circuit_store import CircuitStore
from app.services.helpers.fan_out import run_bounded

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILURE = "failure"
OUTCOME_DENIED = "denied"

ERROR_KIND_VALIDATION = "validation_error"
ERROR_KIND_DELETE_FAILURE = "delete_failure"

DENIAL_REASON = "Blocking dependencies present"
BACKUP_FAILED_WARNING = "Failed to create backup, but proceeding with deletion"
BACKUP_DISABLED_WARNING = "Backups are disabled, proceeding without a backup"


# ═════════════════════════════════════════════════════════════════════════════
# Options, verdicts & results
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DeleteOptions:
    """Caller intent for one delete request."""
    force_delete: bool = False
    cascade_delete: bool = False
    backup_before_delete: bool = False

    FLAGS = ("force_delete", "cascade_delete", "backup_before_delete")

    @classmethod
    def from_dict(cls, data: dict | None) -> "DeleteOptions":
        """Only a literal True switches a flag on."""
        data = data or {}
        return cls(**{name: data.get(name) is True for name in cls.FLAGS})


@dataclass(frozen=True)
class PolicyDecision:
    proceed: bool
    reason: str | None = None


@dataclass
class DeletionResult:
    """Aggregate outcome of a bulk delete."""
    submitted: int = 0
    success: bool = False
    deleted_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failed_circuit_ids: list = field(default_factory=list)
    backup_info: BackupSnapshot | None = None
    error_kind: str | None = None
    analysis: DependencyAnalysisResult | None = None

    @property
    def outcome(self) -> str:
        if self.error_kind == ERROR_KIND_VALIDATION:
            return OUTCOME_DENIED
        if self.deleted_count and not self.failed_count:
            return OUTCOME_SUCCESS
        if self.deleted_count:
            return OUTCOME_PARTIAL
        return OUTCOME_FAILURE

    @property
    def message(self) -> str:
        """Operator-facing summary; distinct per outcome."""
        outcome = self.outcome
        plural = "" if self.deleted_count == 1 else "s"
        if outcome == OUTCOME_SUCCESS:
            return f"Successfully deleted {self.deleted_count} circuit{plural}"
        if outcome == OUTCOME_PARTIAL:
            return f"Deleted {self.deleted_count} circuit{plural}, {self.failed_count} failed"
        if outcome == OUTCOME_DENIED:
            return f"Delete operation failed: {self.errors[0] if self.errors else DENIAL_REASON}"
        return "Failed to delete any circuits"

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "outcome": self.outcome,
            "message": self.message,
            "deleted_count": self.deleted_count,
            "failed_count": self.failed_count,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "failed_circuit_ids": list(self.failed_circuit_ids),
            "error_kind": self.error_kind,
            "backup_info": self.backup_info.to_dict() if self.backup_info else None,
        }
        if self.analysis is not None:
            result["analysis"] = self.analysis.to_dict()
        return result


# ═════════════════════════════════════════════════════════════════════════════
# Policy
# ═════════════════════════════════════════════════════════════════════════════


class DeletionPolicy:
    """Pure allow/deny logic. Force overrides every blocker."""

    @staticmethod
    def decide(analysis: DependencyAnalysisResult | None, options: DeleteOptions) -> PolicyDecision:
        if options.force_delete:
            return PolicyDecision(proceed=True)
        if analysis is None:
            raise ValueError("analysis is required unless force_delete is set")
        if analysis.can_delete:
            return PolicyDecision(proceed=True)
        return PolicyDecision(proceed=False, reason=DENIAL_REASON)


# ═════════════════════════════════════════════════════════════════════════════
# Single-circuit removal
# ═════════════════════════════════════════════════════════════════════════════


def _store_reason(exc: Exception) -> str:
    """Prefer the DB-API message over SQLAlchemy's statement dump."""
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc)


class CascadeDeleter:
    """Removes one circuit inside its own store transaction.

    Cascade order is fixed: transitions, approvals, steps, circuit record.
    Each referencing table goes before the table it points at.
    """

    def __init__(self, store: CircuitStore):
        self.store = store

    def _rollback(self, circuit_id: int) -> None:
        """Roll back; a failed rollback must not mask the delete failure."""
        try:
            self.store.rollback()
        except Exception:
            logger.exception("Rollback failed after delete of circuit id=%s", circuit_id,
                             extra={"circuit_id": circuit_id})

    def _guard(self, circuit_id: int, *, check_approvals: bool) -> None:
        documents = self.store.count_live_documents(circuit_id)
        if documents:
            raise DeleteFailure(
                circuit_id,
                f"Cannot delete circuit: It is currently used by {documents} document(s)",
            )
        if check_approvals:
            approvals = self.store.count_pending_approvals(circuit_id)
            if approvals:
                raise DeleteFailure(
                    circuit_id,
                    f"Cannot delete circuit: It has {approvals} pending approval(s)",
                )

    def cascade_delete(self, circuit_id: int, *, force: bool = False) -> None:
        """Remove dependents then the circuit; raises DeleteFailure.

        Without ``force`` the cascade refuses to discard pending approvals
        or orphan live documents, even if they appeared after analysis.
        """
        try:
            if not force:
                self._guard(circuit_id, check_approvals=True)
            transitions = self.store.delete_transitions(circuit_id)
            approvals = self.store.delete_approvals(circuit_id)
            steps = self.store.delete_steps(circuit_id)
            self.store.delete_circuit(circuit_id)
            self.store.commit()
        except DeleteFailure:
            self._rollback(circuit_id)
            raise
        except Exception as exc:
            self._rollback(circuit_id)
            raise DeleteFailure(circuit_id, _store_reason(exc)) from exc

        logger.info(
            "Circuit cascade-deleted id=%s transitions=%s approvals=%s steps=%s force=%s",
            circuit_id, transitions, approvals, steps, force,
            extra={"circuit_id": circuit_id, "event_type": "circuit.cascade_delete"},
        )

    def plain_delete(self, circuit_id: int) -> None:
        """Delete the circuit record alone; raises DeleteFailure.

        Circuits in use by live documents are refused outright. Anything
        else still referencing the circuit trips the store's foreign keys.
        """
        try:
            self._guard(circuit_id, check_approvals=False)
            self.store.delete_circuit(circuit_id)
            self.store.commit()
        except DeleteFailure:
            self._rollback(circuit_id)
            raise
        except Exception as exc:
            self._rollback(circuit_id)
            raise DeleteFailure(circuit_id, _store_reason(exc)) from exc

        logger.info("Circuit deleted id=%s", circuit_id,
                    extra={"circuit_id": circuit_id, "event_type": "circuit.delete"})


# ═════════════════════════════════════════════════════════════════════════════
# Batch coordination
# ═════════════════════════════════════════════════════════════════════════════


class BulkDeletionCoordinator:
    """Fans a delete request out over many circuits.

    Workers return their own outcome; counters are only touched in the
    calling thread while joining, so there is a single aggregation point.
    """

    def __init__(
        self,
        analyzer: DependencyAnalyzer,
        deleter: CascadeDeleter,
        snapshotter: BackupSnapshotter | None = None,
        *,
        policy: DeletionPolicy | None = None,
        max_workers: int = 1,
    ):
        self.analyzer = analyzer
        self.deleter = deleter
        self.snapshotter = snapshotter
        self.policy = policy or DeletionPolicy()
        self.max_workers = max_workers if deleter.store.thread_safe else 1

    def _delete_one(self, target: tuple, options: DeleteOptions) -> str | None:
        """Return None on success, or the per-circuit error message."""
        circuit_id, title = target
        try:
            if options.cascade_delete:
                self.deleter.cascade_delete(circuit_id, force=options.force_delete)
            else:
                self.deleter.plain_delete(circuit_id)
        except DeleteFailure as failure:
            logger.warning("Circuit delete failed id=%s: %s", circuit_id, failure.reason,
                           extra={"circuit_id": circuit_id})
            return f'Failed to delete circuit "{title}": {failure.reason}'
        except Exception as exc:
            logger.exception("Unexpected error deleting circuit id=%s", circuit_id,
                             extra={"circuit_id": circuit_id})
            return f'Failed to delete circuit "{title}": {_store_reason(exc)}'
        return None

    def delete(self, circuits, options: DeleteOptions) -> DeletionResult:
        circuits = list(circuits)
        # Read ids and titles up front: commits below expire ORM instances.
        targets = [(c.id, c.title) for c in circuits]
        result = DeletionResult(submitted=len(circuits))

        # (a) batch-level policy, before any side effect
        if not options.force_delete:
            result.analysis = self.analyzer.analyze([cid for cid, _ in targets])
        decision = self.policy.decide(result.analysis, options)
        if not decision.proceed:
            result.errors.append(decision.reason)
            result.error_kind = ERROR_KIND_VALIDATION
            logger.info("Bulk delete denied circuits=%d reason=%s",
                        len(circuits), decision.reason)
            return result

        # (b) best-effort backup
        if options.backup_before_delete:
            if self.snapshotter is None:
                result.warnings.append(BACKUP_DISABLED_WARNING)
            else:
                try:
                    result.backup_info = self.snapshotter.snapshot(circuits)
                except BackupError:
                    result.warnings.append(BACKUP_FAILED_WARNING)

        # (c) isolated per-circuit deletes, joined here
        outcomes = run_bounded(
            lambda t: self._delete_one(t, options), targets, max_workers=self.max_workers,
        )
        for (circuit_id, _), error in zip(targets, outcomes):
            if error is None:
                result.deleted_count += 1
            else:
                result.failed_count += 1
                result.failed_circuit_ids.append(circuit_id)
                result.errors.append(error)

        # (d) / (e)
        result.success = result.deleted_count > 0
        if result.failed_count:
            result.error_kind = ERROR_KIND_DELETE_FAILURE
        logger.info(
            "Bulk delete finished outcome=%s deleted=%d failed=%d cascade=%s force=%s",
            result.outcome, result.deleted_count, result.failed_count,
            options.cascade_delete, options.force_delete,
        )
        return result
