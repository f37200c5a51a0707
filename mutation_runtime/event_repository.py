"""
Event Repository — sqlite3 store for editing streams.

One append-only stream per entity. The engine numbers its events; the
store writes each event at exactly that number and never renumbers it.
A writer that replayed an older stream (its sequence is already taken,
or would leave a gap) gets a SequenceConflictError and nothing is
written. Re-appending an event whose uuid is already stored returns the
stored sequence.

Events are stored as JSON and come back as their concrete event class.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from mutation_kernel.events import BaseEvent, reconstruct_event

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class SequenceConflictError(Exception):
    """The stream moved on since the writer last replayed it."""

    def __init__(self, entity_id: str, sequence: int, stored_sequence: int) -> None:
        self.entity_id = entity_id
        self.sequence = sequence
        self.stored_sequence = stored_sequence
        super().__init__(
            f"Stream {entity_id!r} is at sequence {stored_sequence}, "
            f"cannot append sequence {sequence}"
        )


class EventRepository:
    """
    Editing event store backed by sqlite3.

    The connection may be shared between threads, but writers of the same
    entity must hold that entity's lock; the primary key on
    (entity_id, sequence) is the last line against a stale writer.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_PATH.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append_event(self, entity_id: str, event: BaseEvent) -> int:
        """
        Store *event* at event.sequence and return that sequence.

        Raises SequenceConflictError unless event.sequence directly follows
        the last stored event of the stream.
        """
        if event.event_uuid:
            existing = self._sequence_of(entity_id, event.event_uuid)
            if existing is not None:
                logger.debug("Event %s already stored for %s", event.event_uuid, entity_id)
                return existing

        row = event.to_dict()
        try:
            with self._conn:
                stored = self.get_last_sequence(entity_id)
                if event.sequence != stored + 1:
                    logger.warning(
                        "Stale append on %s: sequence %d after %d",
                        entity_id, event.sequence, stored,
                    )
                    raise SequenceConflictError(entity_id, event.sequence, stored)
                self._conn.execute(
                    "INSERT INTO events (entity_id, sequence, event_type, timestamp,"
                    " event_uuid, payload_json) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        entity_id,
                        event.sequence,
                        row["event_type"],
                        row["timestamp"],
                        event.event_uuid or None,
                        json.dumps(row["payload"], ensure_ascii=False),
                    ),
                )
        except sqlite3.IntegrityError:
            stored = self.get_last_sequence(entity_id)
            logger.warning(
                "Lost append race on %s at sequence %d (stored %d)",
                entity_id, event.sequence, stored,
            )
            raise SequenceConflictError(entity_id, event.sequence, stored) from None
        return event.sequence

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load_events(self, entity_id: str) -> List[BaseEvent]:
        """The whole stream of *entity_id*, oldest first."""
        rows = self._conn.execute(
            "SELECT event_type, timestamp, payload_json, sequence, event_uuid"
            " FROM events WHERE entity_id = ? ORDER BY sequence",
            (entity_id,),
        )
        return [
            reconstruct_event({
                "event_type": event_type,
                "timestamp": timestamp,
                "payload": json.loads(payload_json),
                "sequence": sequence,
                "event_uuid": event_uuid or "",
            })
            for event_type, timestamp, payload_json, sequence, event_uuid in rows
        ]

    def get_last_sequence(self, entity_id: str) -> int:
        """Highest stored sequence of the stream, 0 for an unknown entity."""
        (last,) = self._conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) FROM events WHERE entity_id = ?",
            (entity_id,),
        ).fetchone()
        return last

    def _sequence_of(self, entity_id: str, event_uuid: str) -> Optional[int]:
        row = self._conn.execute(
            "SELECT sequence FROM events WHERE entity_id = ? AND event_uuid = ?",
            (entity_id, event_uuid),
        ).fetchone()
        return None if row is None else row[0]

    # ------------------------------------------------------------------
    # Stream metadata
    # ------------------------------------------------------------------

    def update_metadata(self, entity_id: str, sequence: int, state_hash: str) -> None:
        """Record the state hash reached after *sequence*."""
        with self._conn:
            self._conn.execute(
                "INSERT INTO stream_metadata"
                " (entity_id, last_sequence, last_state_hash, updated_at)"
                " VALUES (?, ?, ?, ?)"
                " ON CONFLICT(entity_id) DO UPDATE SET"
                " last_sequence = excluded.last_sequence,"
                " last_state_hash = excluded.last_state_hash,"
                " updated_at = excluded.updated_at",
                (entity_id, sequence, state_hash, datetime.now(timezone.utc).isoformat()),
            )

    def load_metadata(self, entity_id: str) -> Optional[Tuple[int, str]]:
        """(last_sequence, last_state_hash), or None before the first write."""
        row = self._conn.execute(
            "SELECT last_sequence, last_state_hash FROM stream_metadata"
            " WHERE entity_id = ?",
            (entity_id,),
        ).fetchone()
        return None if row is None else (row[0], row[1])

    def close(self) -> None:
        self._conn.close()
