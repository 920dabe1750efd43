"""Async Data Access Layer for the EVENT_JOURNAL table.

Every runtime event is appended before it is reconciled, so a session can be
replayed offline with `replay_journal.py`.
"""

from __future__ import annotations

import json
import time
from typing import Any, List

from models.journal_record import JournalRecord
from utils.database_init import AsyncDatabaseInitializer


class EventJournalDAL:
    """Append-only access to journaled runtime events."""

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def append(self, event_name: str, payload: Any) -> int:
        """Insert one event and return its row id."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "INSERT INTO EVENT_JOURNAL (event_name, payload, received_at) VALUES (?, ?, ?)",
                (event_name, json.dumps(payload), time.time()),
            )
            await conn.commit()
            return cur.lastrowid

    async def list_events(self) -> List[JournalRecord]:
        """Return every journaled event in arrival order."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, event_name, payload, received_at FROM EVENT_JOURNAL ORDER BY id"
            )
            rows = await cur.fetchall()
        return [
            JournalRecord(
                id=row["id"],
                event_name=row["event_name"],
                payload=json.loads(row["payload"]) if row["payload"] is not None else None,
                received_at=row["received_at"],
            )
            for row in rows
        ]

    async def count(self) -> int:
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT COUNT(*) FROM EVENT_JOURNAL")
            row = await cur.fetchone()
        return int(row[0]) if row else 0
