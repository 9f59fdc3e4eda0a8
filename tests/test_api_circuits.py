"""
Tests: Circuit API — administration and lifecycle safety endpoints.

Exercises the full stack (blueprint → services → SqlCircuitStore → SQLite with
foreign keys enforced):
    - circuit / step / status / transition / document administration rules
    - dependency analysis and deletion pre-flight
    - bulk delete: clean, denied, forced cascade, FK failure on plain delete,
      partial outcome, backups
    - archive, can-deactivate and toggle-activation guards

Helpers commit instead of flush: requests run in their own app context and
would otherwise roll back fixture rows on a failed delete.
"""

import json

import pytest
from sqlalchemy import func, select

from app.models import db as _db
from app.models.circuit import Circuit, CircuitBackup, Status, Step, Transition
from app.models.document import Approval, Document


# ── Helpers ──────────────────────────────────────────────────────────────────


def _make_circuit(title="Invoice approval", key=None, is_active=True) -> Circuit:
    n = _count(Circuit) + 1
    c = Circuit(circuit_key=key or f"CR{n:02d}", title=title, is_active=is_active)
    _db.session.add(c)
    _db.session.commit()
    return c


def _make_step(circuit: Circuit, order_index=1) -> Step:
    s = Step(
        circuit_id=circuit.id,
        step_key=f"{circuit.circuit_key}-ST{order_index:02d}",
        title=f"Step {order_index}",
        order_index=order_index,
    )
    _db.session.add(s)
    _db.session.commit()
    return s


def _make_transition(circuit: Circuit) -> Transition:
    a = Status(circuit_id=circuit.id, title="Draft", is_initial=True)
    b = Status(circuit_id=circuit.id, title="Done", is_final=True)
    _db.session.add_all([a, b])
    _db.session.flush()
    t = Transition(circuit_id=circuit.id, from_status_id=a.id, to_status_id=b.id)
    _db.session.add(t)
    _db.session.commit()
    return t


def _make_document(circuit: Circuit, key="DOC-1", completed=False) -> Document:
    d = Document(document_key=key, title=key, circuit_id=circuit.id,
                 is_circuit_completed=completed)
    _db.session.add(d)
    _db.session.commit()
    return d


def _make_approval(circuit: Circuit, status="pending") -> Approval:
    step = _make_step(circuit, order_index=_count(Step, Step.circuit_id == circuit.id) + 1)
    doc = _make_document(circuit, key=f"DOC-A{step.id}", completed=True)
    a = Approval(circuit_id=circuit.id, step_id=step.id, document_id=doc.id, status=status)
    _db.session.add(a)
    _db.session.commit()
    return a


def _count(model, *criteria) -> int:
    return _db.session.execute(select(func.count(model.id)).where(*criteria)).scalar()


def _exists(circuit_id: int) -> bool:
    return _count(Circuit, Circuit.id == circuit_id) == 1


def _bulk_delete(client, ids, **options):
    return client.post("/api/v1/circuits/bulk-delete",
                       json={"circuit_ids": ids, "options": options})


# ── Administration ───────────────────────────────────────────────────────────


class TestCircuitAdministration:

    def test_create_generates_sequential_keys(self, client):
        r1 = client.post("/api/v1/circuits", json={"title": "Invoices"})
        r2 = client.post("/api/v1/circuits", json={"title": "Orders"})
        assert r1.status_code == 201
        assert r1.get_json()["circuit_key"] == "CR01"
        assert r2.get_json()["circuit_key"] == "CR02"
        assert r1.get_json()["is_active"] is True

    def test_create_requires_title(self, client):
        res = client.post("/api/v1/circuits", json={})
        assert res.status_code == 422

    def test_list_filters_by_active(self, client):
        _make_circuit("A")
        _make_circuit("B", is_active=False)
        body = client.get("/api/v1/circuits?active=false").get_json()
        assert [c["title"] for c in body["items"]] == ["B"]
        assert client.get("/api/v1/circuits").get_json()["total"] == 2
        assert client.get("/api/v1/circuits?active=maybe").status_code == 400

    def test_get_includes_children(self, client):
        c = _make_circuit()
        _make_step(c)
        body = client.get(f"/api/v1/circuits/{c.id}").get_json()
        assert len(body["steps"]) == 1
        assert client.get("/api/v1/circuits/999").status_code == 404

    def test_duplicate_step_order_is_a_conflict(self, client):
        c = _make_circuit()
        res = client.post(f"/api/v1/circuits/{c.id}/steps", json={"title": "Review", "order_index": 1})
        assert res.status_code == 201
        assert res.get_json()["step_key"] == "CR01-ST01"
        res = client.post(f"/api/v1/circuits/{c.id}/steps", json={"title": "Again", "order_index": 1})
        assert res.status_code == 409

    def test_step_order_defaults_to_next(self, client):
        c = _make_circuit()
        _make_step(c, order_index=3)
        res = client.post(f"/api/v1/circuits/{c.id}/steps", json={"title": "Next"})
        assert res.get_json()["order_index"] == 4

    def test_status_rules(self, client):
        c = _make_circuit()
        url = f"/api/v1/circuits/{c.id}/statuses"
        assert client.post(url, json={"title": "X", "is_initial": True, "is_final": True}).status_code == 422
        assert client.post(url, json={"title": "Start", "is_initial": True}).status_code == 201
        assert client.post(url, json={"title": "Start2", "is_initial": True}).status_code == 422
        assert client.post(url, json={"title": "End", "is_final": True}).status_code == 201
        assert client.post(url, json={"title": "End2", "is_final": True}).status_code == 422

    def test_transition_statuses_must_belong_to_circuit(self, client):
        c1 = _make_circuit("One")
        c2 = _make_circuit("Two")
        own = Status(circuit_id=c1.id, title="A")
        other = Status(circuit_id=c2.id, title="B")
        _db.session.add_all([own, other])
        _db.session.commit()
        res = client.post(f"/api/v1/circuits/{c1.id}/transitions",
                          json={"from_status_id": own.id, "to_status_id": other.id})
        assert res.status_code == 422

    def test_transition_created_and_duplicate_rejected(self, client):
        c = _make_circuit()
        a = Status(circuit_id=c.id, title="A")
        b = Status(circuit_id=c.id, title="B")
        _db.session.add_all([a, b])
        _db.session.commit()
        payload = {"from_status_id": a.id, "to_status_id": b.id}
        assert client.post(f"/api/v1/circuits/{c.id}/transitions", json=payload).status_code == 201
        assert client.post(f"/api/v1/circuits/{c.id}/transitions", json=payload).status_code == 409

    def test_inactive_circuit_rejects_documents(self, client):
        c = _make_circuit(is_active=False)
        res = client.post(f"/api/v1/circuits/{c.id}/documents", json={"document_key": "D-1"})
        assert res.status_code == 422


# ── Dependency analysis ──────────────────────────────────────────────────────


class TestDependencyEndpoints:

    def test_analysis_reports_real_counts(self, client):
        c = _make_circuit()
        _make_step(c)
        _make_transition(c)
        _make_document(c)
        _make_approval(c)
        body = client.post("/api/v1/circuits/dependencies",
                           json={"circuit_ids": [c.id]}).get_json()
        counts = {d["type"]: d["count"] for d in body["dependencies"]}
        assert counts == {"documents": 1, "steps": 2, "approvals": 1, "transitions": 1}
        assert body["can_delete"] is False

    def test_completed_documents_and_decided_approvals_do_not_count(self, client):
        c = _make_circuit()
        _make_document(c, completed=True)
        _make_approval(c, status="approved")
        body = client.post("/api/v1/circuits/dependencies",
                           json={"circuit_ids": [c.id]}).get_json()
        assert body["can_delete"] is True
        assert "documents" not in {d["type"] for d in body["dependencies"]}

    def test_validate_deletion(self, client):
        clean = _make_circuit("Clean")
        blocked = _make_circuit("Blocked")
        _make_approval(blocked)
        ok = client.post("/api/v1/circuits/validate-deletion", json={"circuit_ids": [clean.id]})
        assert ok.get_json() == {"can_delete": True, "reasons": []}
        no = client.post("/api/v1/circuits/validate-deletion",
                         json={"circuit_ids": [clean.id, blocked.id]}).get_json()
        assert no["can_delete"] is False
        assert no["reasons"] == ["Circuits have blocking dependencies"]

    def test_bad_ids_are_rejected(self, client):
        assert client.post("/api/v1/circuits/dependencies", json={}).status_code == 400
        assert client.post("/api/v1/circuits/dependencies",
                           json={"circuit_ids": ["1"]}).status_code == 400
        assert client.post("/api/v1/circuits/dependencies",
                           json={"circuit_ids": [404]}).status_code == 404


# ── Bulk delete ──────────────────────────────────────────────────────────────


class TestBulkDelete:

    def test_clean_batch_is_deleted(self, client):
        ids = [_make_circuit(f"C{i}").id for i in range(3)]
        res = _bulk_delete(client, ids)
        assert res.status_code == 200
        body = res.get_json()
        assert body["deleted_count"] == 3
        assert body["outcome"] == "success"
        assert _count(Circuit) == 0

    def test_pending_approval_denies_whole_batch(self, client):
        ids = [_make_circuit(f"C{i}").id for i in range(3)]
        _make_approval(_db.session.get(Circuit, ids[1]))
        res = _bulk_delete(client, ids)
        assert res.status_code == 409
        body = res.get_json()
        assert body["deleted_count"] == 0
        assert body["failed_count"] == 0
        assert body["error_kind"] == "validation_error"
        assert body["analysis"]["has_blocking_dependencies"] is True
        assert _count(Circuit) == 3

    def test_forced_cascade_removes_dependents(self, client):
        c = _make_circuit()
        _make_step(c)
        _make_transition(c)
        doc = _make_document(c)
        _make_approval(c)
        res = _bulk_delete(client, [c.id], force_delete=True, cascade_delete=True)
        assert res.status_code == 200
        assert res.get_json()["deleted_count"] == 1
        assert not _exists(c.id)
        assert _count(Step) == 0
        assert _count(Transition) == 0
        assert _count(Status) == 0
        assert _count(Approval) == 0
        detached = _db.session.execute(
            select(Document.circuit_id).where(Document.id == doc.id)
        ).scalar()
        assert detached is None

    def test_plain_delete_with_steps_fails_on_foreign_key(self, client):
        c = _make_circuit("Has steps")
        _make_step(c)
        res = _bulk_delete(client, [c.id])
        assert res.status_code == 422
        body = res.get_json()
        assert body["outcome"] == "failure"
        assert body["errors"][0].startswith('Failed to delete circuit "Has steps"')
        assert "FOREIGN KEY" in body["errors"][0]
        assert _exists(c.id)
        assert _count(Step) == 1

    def test_partial_batch(self, client):
        ok = _make_circuit("Clean")
        stuck = _make_circuit("Stuck")
        _make_step(stuck)
        res = _bulk_delete(client, [ok.id, stuck.id])
        assert res.status_code == 200
        body = res.get_json()
        assert body["outcome"] == "partial"
        assert body["deleted_count"] == 1
        assert body["failed_count"] == 1
        assert body["failed_circuit_ids"] == [stuck.id]
        assert body["message"] == "Deleted 1 circuit, 1 failed"

    def test_unforced_cascade_refuses_live_documents(self, client):
        c = _make_circuit("In use")
        _make_document(c)
        res = _bulk_delete(client, [c.id], cascade_delete=True)
        assert res.status_code == 422
        assert "currently used by 1 document(s)" in res.get_json()["errors"][0]
        assert _exists(c.id)

    def test_backup_is_stored_and_downloadable(self, client):
        c = _make_circuit("Backed up")
        _make_step(c)
        res = _bulk_delete(client, [c.id], cascade_delete=True, backup_before_delete=True)
        info = res.get_json()["backup_info"]
        assert info["filename"].startswith("circuits_backup_")
        assert info["size"].endswith("KB")
        assert _count(CircuitBackup) == 1

        listing = client.get("/api/v1/circuits/backups").get_json()
        assert listing["items"][0]["filename"] == info["filename"]
        assert listing["items"][0]["circuit_count"] == 1

        download = client.get(f"/api/v1/circuits/backups/{info['filename']}")
        assert download.status_code == 200
        doc = json.loads(download.data)
        assert doc["circuits"][0]["title"] == "Backed up"
        assert len(doc["circuits"][0]["steps"]) == 1
        assert doc["metadata"]["total_circuits"] == 1

    def test_unknown_backup_is_404(self, client):
        assert client.get("/api/v1/circuits/backups/nope.json").status_code == 404

    def test_options_must_be_an_object(self, client):
        c = _make_circuit()
        res = client.post("/api/v1/circuits/bulk-delete",
                          json={"circuit_ids": [c.id], "options": "force"})
        assert res.status_code == 400

    @pytest.mark.parametrize("value", ["false", "true", 0, 1, None])
    def test_non_boolean_flags_are_rejected(self, client, value):
        c = _make_circuit()
        _make_approval(c)
        res = _bulk_delete(client, [c.id], force_delete=value, cascade_delete=True)
        assert res.status_code == 400
        assert "force_delete must be a boolean" in res.get_json()["error"]
        assert _exists(c.id)
        assert _count(Approval) == 1

    def test_non_boolean_cascade_flag_is_rejected(self, client):
        c = _make_circuit()
        _make_approval(c)
        res = _bulk_delete(client, [c.id], force_delete=False, cascade_delete="yes")
        assert res.status_code == 400
        assert "cascade_delete must be a boolean" in res.get_json()["error"]
        assert _count(Approval) == 1


# ── Activation & archive ─────────────────────────────────────────────────────


class TestActivation:

    def test_can_deactivate(self, client):
        c = _make_circuit()
        body = client.get(f"/api/v1/circuits/{c.id}/can-deactivate").get_json()
        assert body["allowed"] is True
        _make_document(c)
        body = client.get(f"/api/v1/circuits/{c.id}/can-deactivate").get_json()
        assert body["allowed"] is False
        assert body["document_count"] == 1

    def test_toggle_refused_with_live_documents(self, client):
        c = _make_circuit()
        _make_document(c)
        res = client.post(f"/api/v1/circuits/{c.id}/toggle-activation")
        assert res.status_code == 409
        assert res.get_json()["document_count"] == 1

    def test_toggle_round_trip(self, client):
        c = _make_circuit()
        off = client.post(f"/api/v1/circuits/{c.id}/toggle-activation").get_json()
        assert off["is_active"] is False
        on = client.post(f"/api/v1/circuits/{c.id}/toggle-activation").get_json()
        assert on["is_active"] is True

    def test_archive_refused_then_forced(self, client):
        c = _make_circuit()
        _make_document(c)
        refused = client.post(f"/api/v1/circuits/{c.id}/archive", json={})
        assert refused.status_code == 409
        forced = client.post(f"/api/v1/circuits/{c.id}/archive", json={"force": True})
        assert forced.status_code == 200
        body = forced.get_json()
        assert body["circuit"]["is_active"] is False
        assert body["circuit"]["archived_at"] is not None
        assert "1 document(s)" in body["warning"]

    @pytest.mark.parametrize("value", ["false", 1])
    def test_archive_force_must_be_boolean(self, client, value):
        c = _make_circuit()
        _make_document(c)
        res = client.post(f"/api/v1/circuits/{c.id}/archive", json={"force": value})
        assert res.status_code == 400
        assert "force must be a boolean" in res.get_json()["error"]
        body = client.get(f"/api/v1/circuits/{c.id}").get_json()
        assert body["is_active"] is True
        assert body["archived_at"] is None

    def test_archive_unused_circuit(self, client):
        c = _make_circuit()
        res = client.post(f"/api/v1/circuits/{c.id}/archive")
        assert res.status_code == 200
        assert res.get_json()["warning"] is None
