"""
Tests: pre-deletion circuit backups.

Covers filename derivation from a fixed clock, millisecond UTC timestamps,
the metadata envelope, KB size reporting and BackupError on store failure.
"""

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.core.exceptions import BackupError
from app.services.circuit_backup import BackupSnapshotter, backup_filename, format_timestamp

_FIXED = datetime(2026, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc)


def _snapshotter(store, **kwargs):
    return BackupSnapshotter(store, clock=lambda: _FIXED, **kwargs)


def test_timestamp_has_millisecond_precision_and_z_suffix():
    assert format_timestamp(_FIXED) == "2026-03-14T09:26:53.589Z"


def test_filename_replaces_colons_and_dots():
    assert backup_filename("2026-03-14T09:26:53.589Z") == \
        "circuits_backup_2026-03-14T09-26-53-589Z.json"


def test_snapshot_stores_payload_with_metadata(fake_store):
    circuits = [SimpleNamespace(id=1, title="Invoices"), SimpleNamespace(id=2, title="Orders")]
    snap = _snapshotter(fake_store, schema_version="2.1", created_by="ops").snapshot(circuits)

    assert snap.filename == "circuits_backup_2026-03-14T09-26-53-589Z.json"
    assert snap.timestamp == "2026-03-14T09:26:53.589Z"
    filename, size, count, payload = fake_store.backups[0]
    assert filename == snap.filename
    assert count == 2
    assert size == snap.size

    doc = json.loads(payload)
    assert doc["metadata"] == {"version": "2.1", "created_by": "ops", "total_circuits": 2}
    assert [c["title"] for c in doc["circuits"]] == ["Invoices", "Orders"]


def test_size_is_rounded_kilobytes(fake_store):
    circuits = [SimpleNamespace(id=i, title="x" * 500) for i in range(10)]
    snap = _snapshotter(fake_store).snapshot(circuits)
    payload = fake_store.backups[0][3]
    assert snap.size == f"{round(len(payload.encode('utf-8')) / 1024)}KB"
    assert snap.size.endswith("KB")


def test_store_failure_raises_backup_error(fake_store):
    fake_store.fail_backup = True
    with pytest.raises(BackupError) as exc:
        _snapshotter(fake_store).snapshot([SimpleNamespace(id=1, title="A")])
    assert "Failed to create backup" in str(exc.value)
