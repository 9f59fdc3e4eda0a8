"""
Circuit dependency analysis.

Answers "what references this circuit, and does it block deletion?" for a
set of circuits. Each circuit is checked in four categories:

    documents    live document assignments      always forceable
    steps        steps owned by the circuit     always forceable
    approvals    pending approvals              blocks while count > 0
    transitions  status transitions             always forceable

Approvals are the only hard blocker. This is a confirmed business rule;
do not widen or narrow it without product sign-off.

A category that cannot be queried is reported as a blocking record
(count 0, check_failed=True) instead of aborting the analysis, so a
broken store can never make a deletion look safe.

Usage:
    analyzer = DependencyAnalyzer(SqlCircuitStore())
    result = analyzer.analyze([1, 2, 3])
    if not result.can_delete:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.core.exceptions import DependencyCheckError
from app.services.circuit_store import CircuitStore
from app.services.helpers.fan_out import run_bounded

logger = logging.getLogger(__name__)

DOCUMENTS = "documents"
STEPS = "steps"
APPROVALS = "approvals"
TRANSITIONS = "transitions"

CATEGORIES = (DOCUMENTS, STEPS, APPROVALS, TRANSITIONS)

_COUNTERS = {
    DOCUMENTS: "count_live_documents",
    STEPS: "count_steps",
    APPROVALS: "count_pending_approvals",
    TRANSITIONS: "count_transitions",
}

_DESCRIPTIONS = {
    DOCUMENTS: "Documents using circuit {circuit_id}",
    STEPS: "Circuit steps and configurations",
    APPROVALS: "Pending approvals in circuit",
    TRANSITIONS: "Workflow transitions",
}

WARNING_BLOCKING = "This circuit has blocking dependencies that prevent deletion"
SUGGESTION_ARCHIVE = "Consider archiving the circuit instead of deleting it"
SUGGESTION_REVIEW_DOCUMENTS = "Review documents using this circuit before deletion"


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class DependencyRecord:
    """One dependency category of one circuit. Computed per request."""
    category: str
    count: int
    description: str
    can_force_delete: bool
    circuit_id: int | None = None
    check_failed: bool = False
    details: list = field(default_factory=list)

    @property
    def is_blocking(self) -> bool:
        return not self.can_force_delete and (self.count > 0 or self.check_failed)

    @property
    def is_reportable(self) -> bool:
        return self.count > 0 or self.check_failed

    def to_dict(self) -> dict:
        return {
            "type": self.category,
            "circuit_id": self.circuit_id,
            "count": self.count,
            "description": self.description,
            "can_force_delete": self.can_force_delete,
            "check_failed": self.check_failed,
            "details": self.details,
        }


@dataclass
class DependencyAnalysisResult:
    """Aggregate analysis over a batch of circuits."""
    dependencies: list[DependencyRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def has_blocking_dependencies(self) -> bool:
        return any(d.is_blocking for d in self.dependencies)

    @property
    def can_delete(self) -> bool:
        return not self.has_blocking_dependencies

    def for_circuit(self, circuit_id: int) -> list[DependencyRecord]:
        return [d for d in self.dependencies if d.circuit_id == circuit_id]

    def to_dict(self) -> dict:
        return {
            "dependencies": [d.to_dict() for d in self.dependencies],
            "has_blocking_dependencies": self.has_blocking_dependencies,
            "can_delete": self.can_delete,
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }


@dataclass
class ActivationCheck:
    """Outcome of a deactivation guard."""
    circuit_id: int
    allowed: bool
    document_count: int
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "circuit_id": self.circuit_id,
            "allowed": self.allowed,
            "document_count": self.document_count,
            "reason": self.reason,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Analyzer
# ═════════════════════════════════════════════════════════════════════════════


class DependencyAnalyzer:
    """Computes DependencyRecords against a CircuitStore.

    Category checks of every circuit are independent; they fan out over
    ``max_workers`` threads when the store is thread-safe and are joined
    before the blocking verdict is computed.
    """

    def __init__(self, store: CircuitStore, *, max_workers: int = 1):
        self.store = store
        self.max_workers = max_workers if store.thread_safe else 1

    def check(self, circuit_id: int, category: str) -> DependencyRecord:
        """Query one category for one circuit. Never raises for store errors."""
        counter = getattr(self.store, _COUNTERS[category])
        try:
            count = int(counter(circuit_id))
        except Exception as exc:
            error = DependencyCheckError(category, circuit_id, exc)
            logger.warning("%s", error, extra={"circuit_id": circuit_id})
            return DependencyRecord(
                category=category,
                count=0,
                description=f"Failed to check {category} dependencies",
                can_force_delete=False,
                circuit_id=circuit_id,
                check_failed=True,
            )

        return DependencyRecord(
            category=category,
            count=count,
            description=_DESCRIPTIONS[category].format(circuit_id=circuit_id),
            can_force_delete=(count == 0) if category == APPROVALS else True,
            circuit_id=circuit_id,
        )

    def analyze(self, circuit_ids) -> DependencyAnalysisResult:
        """Analyze every category of every circuit and derive the verdict."""
        circuit_ids = list(circuit_ids)
        pairs = [(cid, category) for cid in circuit_ids for category in CATEGORIES]
        records = run_bounded(
            lambda pair: self.check(*pair), pairs, max_workers=self.max_workers,
        )

        result = DependencyAnalysisResult(
            dependencies=[r for r in records if r.is_reportable],
        )

        for record in result.dependencies:
            if record.check_failed:
                result.warnings.append(
                    f"Could not check {record.category} for circuit {record.circuit_id}; "
                    "treating it as blocking"
                )

        if result.has_blocking_dependencies:
            result.warnings.append(WARNING_BLOCKING)
            result.suggestions.append(SUGGESTION_ARCHIVE)

        if any(d.category == DOCUMENTS and d.count > 0 for d in result.dependencies):
            result.suggestions.append(SUGGESTION_REVIEW_DOCUMENTS)

        logger.info(
            "Dependency analysis circuits=%d records=%d blocking=%s",
            len(circuit_ids), len(result.dependencies),
            result.has_blocking_dependencies,
        )
        return result


# ═════════════════════════════════════════════════════════════════════════════
# Activation guard
# ═════════════════════════════════════════════════════════════════════════════


class ActivationGuard:
    """Deactivation check restricted to live document assignments.

    There is no force path here: deactivating a circuit must never strand
    in-flight documents.
    """

    def __init__(self, analyzer: DependencyAnalyzer):
        self.analyzer = analyzer

    def can_deactivate(self, circuit) -> ActivationCheck:
        record = self.analyzer.check(circuit.id, DOCUMENTS)
        if record.check_failed:
            return ActivationCheck(
                circuit_id=circuit.id,
                allowed=False,
                document_count=0,
                reason="Could not verify document assignments for this circuit",
            )
        if record.count > 0:
            return ActivationCheck(
                circuit_id=circuit.id,
                allowed=False,
                document_count=record.count,
                reason=(
                    "Cannot deactivate circuit: It is currently used by "
                    f"{record.count} document(s)"
                ),
            )
        return ActivationCheck(circuit_id=circuit.id, allowed=True, document_count=0)
