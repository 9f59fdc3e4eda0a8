"""
Pre-deletion circuit backups.

Captures the circuits about to be deleted as one JSON document with a small
metadata envelope and persists it through the CircuitStore. Backups are
best-effort: any failure surfaces as BackupError, which the bulk deletion
coordinator turns into a warning before carrying on.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from app.core.exceptions import BackupError
from app.services.circuit_store import CircuitStore

logger = logging.getLogger(__name__)


@dataclass
class BackupSnapshot:
    """Metadata of a stored backup. The payload stays with the store."""
    filename: str
    size: str
    timestamp: str

    def to_dict(self) -> dict:
        return {"filename": self.filename, "size": self.size, "timestamp": self.timestamp}


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def backup_filename(timestamp: str) -> str:
    """``circuits_backup_<timestamp with ':' and '.' as '-'>.json``"""
    return f"circuits_backup_{timestamp.replace(':', '-').replace('.', '-')}.json"


def _serialize_circuit(circuit) -> dict:
    to_dict = getattr(circuit, "to_dict", None)
    if to_dict is not None:
        return to_dict(include_children=True)
    return dict(vars(circuit))


class BackupSnapshotter:
    """Builds and stores a JSON capture of a circuit batch."""

    def __init__(
        self,
        store: CircuitStore,
        *,
        schema_version: str = "1.0",
        created_by: str = "system",
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.schema_version = schema_version
        self.created_by = created_by
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def snapshot(self, circuits) -> BackupSnapshot:
        """Capture ``circuits``; raises BackupError on any failure."""
        circuits = list(circuits)
        try:
            timestamp = format_timestamp(self.clock())
            filename = backup_filename(timestamp)
            payload = json.dumps(
                {
                    "timestamp": timestamp,
                    "circuits": [_serialize_circuit(c) for c in circuits],
                    "metadata": {
                        "version": self.schema_version,
                        "created_by": self.created_by,
                        "total_circuits": len(circuits),
                    },
                },
                default=str,
                ensure_ascii=False,
            )
            size = f"{round(len(payload.encode('utf-8')) / 1024)}KB"
            self.store.save_backup(filename, size, len(circuits), payload)
        except Exception as exc:
            logger.warning("Circuit backup failed circuits=%d: %s", len(circuits), exc)
            raise BackupError(f"Failed to create backup: {exc}") from exc

        logger.info("Circuit backup created filename=%s size=%s circuits=%d",
                    filename, size, len(circuits))
        return BackupSnapshot(filename=filename, size=size, timestamp=timestamp)
