"""
Shared pytest fixtures for the Circuit Lifecycle Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - fake_store: In-memory CircuitStore double for engine unit tests
"""

import threading

import pytest

from app import create_app
from app.models import db as _db
from app.services.circuit_store import CircuitStore


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── In-memory store ──────────────────────────────────────────────────────


class FakeCircuitStore(CircuitStore):
    """Dict-backed CircuitStore recording every mutating call.

    ``counts[circuit_id][category]`` seeds dependency counts.
    ``fail_counts`` is a set of (circuit_id, category) whose count raises.
    ``fail_deletes`` is a set of circuit ids whose delete_circuit raises.
    ``fail_backup`` makes save_backup raise.
    """

    def __init__(self, counts=None, *, thread_safe=False):
        self.counts = counts or {}
        self.thread_safe = thread_safe
        self.fail_counts = set()
        self.fail_deletes = set()
        self.fail_backup = False
        self.calls = []
        self.deleted = set()
        self.backups = []
        self.active = {}
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def _get(self, circuit_id, category):
        if (circuit_id, category) in self.fail_counts:
            raise RuntimeError(f"{category} table unavailable")
        return self.counts.get(circuit_id, {}).get(category, 0)

    def count_live_documents(self, circuit_id):
        return self._get(circuit_id, "documents")

    def count_steps(self, circuit_id):
        return self._get(circuit_id, "steps")

    def count_pending_approvals(self, circuit_id):
        return self._get(circuit_id, "approvals")

    def count_transitions(self, circuit_id):
        return self._get(circuit_id, "transitions")

    def _clear(self, circuit_id, category):
        self._record(f"delete_{category}", circuit_id)
        removed = self.counts.get(circuit_id, {}).get(category, 0)
        self.counts.setdefault(circuit_id, {})[category] = 0
        return removed

    def delete_transitions(self, circuit_id):
        return self._clear(circuit_id, "transitions")

    def delete_approvals(self, circuit_id):
        return self._clear(circuit_id, "approvals")

    def delete_steps(self, circuit_id):
        return self._clear(circuit_id, "steps")

    def delete_circuit(self, circuit_id):
        self._record("delete_circuit", circuit_id)
        if circuit_id in self.fail_deletes:
            raise RuntimeError("FOREIGN KEY constraint failed")
        remaining = self.counts.get(circuit_id, {})
        if remaining.get("steps") or remaining.get("transitions"):
            raise RuntimeError("FOREIGN KEY constraint failed")
        self.deleted.add(circuit_id)

    def commit(self):
        self._record("commit")

    def rollback(self):
        self._record("rollback")

    def set_active(self, circuit_id, is_active, *, archive=False):
        self._record("set_active", circuit_id, is_active, archive)
        self.active[circuit_id] = is_active

    def save_backup(self, filename, size, circuit_count, payload):
        if self.fail_backup:
            raise OSError("disk full")
        self.backups.append((filename, size, circuit_count, payload))


@pytest.fixture()
def fake_store():
    return FakeCircuitStore()
