"""
Circuit lifecycle service: boundary operations of the safety engine.

    analyze_dependencies(circuit_ids)     -> DependencyAnalysisResult
    validate_deletion(circuit_ids)        -> DeletionValidation
    delete_circuits(circuits, options)    -> DeletionResult
    archive_circuit(circuit, force=False) -> ActivationCheck
    can_deactivate(circuit)               -> ActivationCheck

The service is an explicit object built around an injected CircuitStore.
Blueprints build one per request from app config with ``for_app``; tests
construct it around an in-memory store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.services.circuit_backup import BackupSnapshotter
from app.services.circuit_deletion import (
    BulkDeletionCoordinator,
    CascadeDeleter,
    DeleteOptions,
    DeletionResult,
)
from app.services.circuit_dependency import (
    ActivationCheck,
    ActivationGuard,
    DependencyAnalysisResult,
    DependencyAnalyzer,
)
from app.services.circuit_store import CircuitStore, SqlCircuitStore

logger = logging.getLogger(__name__)


@dataclass
class DeletionValidation:
    """Read-only pre-flight verdict."""
    can_delete: bool
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"can_delete": self.can_delete, "reasons": list(self.reasons)}


class CircuitLifecycleService:
    """Facade wiring analyzer, guard, deleter, snapshotter and coordinator."""

    def __init__(
        self,
        store: CircuitStore,
        *,
        max_workers: int = 1,
        backups_enabled: bool = True,
        backup_schema_version: str = "1.0",
        backup_created_by: str = "system",
        snapshotter: BackupSnapshotter | None = None,
    ):
        self.store = store
        self.analyzer = DependencyAnalyzer(store, max_workers=max_workers)
        self.activation_guard = ActivationGuard(self.analyzer)
        self.deleter = CascadeDeleter(store)
        if snapshotter is None and backups_enabled:
            snapshotter = BackupSnapshotter(
                store,
                schema_version=backup_schema_version,
                created_by=backup_created_by,
            )
        self.snapshotter = snapshotter
        self.coordinator = BulkDeletionCoordinator(
            self.analyzer, self.deleter, self.snapshotter, max_workers=max_workers,
        )

    @classmethod
    def for_app(cls, app, store: CircuitStore | None = None) -> "CircuitLifecycleService":
        """Build a service from Flask config (CIRCUIT_* keys)."""
        cfg = app.config
        return cls(
            store if store is not None else SqlCircuitStore(),
            max_workers=int(cfg.get("CIRCUIT_ENGINE_MAX_WORKERS", 1)),
            backups_enabled=bool(cfg.get("CIRCUIT_BACKUP_ENABLED", True)),
            backup_schema_version=cfg.get("CIRCUIT_BACKUP_SCHEMA_VERSION", "1.0"),
            backup_created_by=cfg.get("CIRCUIT_BACKUP_CREATED_BY", "system"),
        )

    # ── Read-only ────────────────────────────────────────────────────────

    def analyze_dependencies(self, circuit_ids) -> DependencyAnalysisResult:
        return self.analyzer.analyze(circuit_ids)

    def validate_deletion(self, circuit_ids) -> DeletionValidation:
        """Pre-flight check; never mutates anything."""
        reasons: list[str] = []
        try:
            analysis = self.analyzer.analyze(circuit_ids)
        except Exception:
            logger.exception("Deletion validation failed")
            return DeletionValidation(
                can_delete=False, reasons=["Failed to validate deletion permissions"],
            )
        if analysis.has_blocking_dependencies:
            reasons.append("Circuits have blocking dependencies")
        return DeletionValidation(can_delete=not reasons, reasons=reasons)

    def can_deactivate(self, circuit) -> ActivationCheck:
        return self.activation_guard.can_deactivate(circuit)

    # ── Mutating ─────────────────────────────────────────────────────────

    def delete_circuits(self, circuits, options: DeleteOptions) -> DeletionResult:
        return self.coordinator.delete(circuits, options)

    def archive_circuit(self, circuit, *, force: bool = False) -> ActivationCheck:
        """Soft-delete: flip is_active off and stamp archived_at.

        Refused while live documents are assigned unless ``force`` is set.
        The returned check's ``allowed`` tells whether the archive happened.
        """
        check = self.activation_guard.can_deactivate(circuit)
        if not check.allowed and not force:
            logger.info("Archive refused circuit=%s documents=%s",
                        check.circuit_id, check.document_count)
            return check
        self.store.set_active(check.circuit_id, False, archive=True)
        logger.info("Circuit archived id=%s force=%s", check.circuit_id, force,
                    extra={"circuit_id": check.circuit_id, "event_type": "circuit.archive"})
        return ActivationCheck(
            circuit_id=check.circuit_id,
            allowed=True,
            document_count=check.document_count,
            reason=check.reason if not check.allowed else None,
        )
