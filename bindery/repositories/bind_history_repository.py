from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from typing import cast
from uuid import uuid4

from bindery.repositories.common import utc_now_iso
from bindery.repositories.database import Database

DEFAULT_HISTORY_MAX_ENTRIES = 20


@dataclass(frozen=True)
class BindHistoryEntry:
    id: str
    title: str
    urls: tuple[str, ...]
    sent_at: str


class BindHistoryRepository:
    def __init__(self, db: Database, *, max_entries: int = DEFAULT_HISTORY_MAX_ENTRIES) -> None:
        self._db = db
        self._max_entries = max(1, max_entries)

    def list_entries(self, conversation_id: str, *, limit: int | None = None) -> list[BindHistoryEntry]:
        """Return entries for a conversation, most recent first."""
        effective_limit = self._max_entries if limit is None else max(0, limit)
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, title, urls_json, sent_at
                FROM bind_history
                WHERE conversation_id = ?
                ORDER BY sent_at DESC, rowid DESC
                LIMIT ?
                """,
                (conversation_id, effective_limit),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def get_entry(self, conversation_id: str, entry_id: str) -> BindHistoryEntry | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, title, urls_json, sent_at
                FROM bind_history
                WHERE conversation_id = ? AND id = ?
                """,
                (conversation_id, entry_id),
            ).fetchone()
        if row is None:
            return None
        return _row_to_entry(row)

    def add_entry(self, conversation_id: str, *, title: str, urls: Sequence[str]) -> BindHistoryEntry:
        """Record a sent collection and drop the oldest entries beyond the cap."""
        entry = BindHistoryEntry(
            id=f"bind_{uuid4().hex[:12]}",
            title=title,
            urls=tuple(urls),
            sent_at=utc_now_iso(),
        )
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO bind_history (id, conversation_id, title, urls_json, sent_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    conversation_id,
                    entry.title,
                    json.dumps(list(entry.urls)),
                    entry.sent_at,
                ),
            )
            conn.execute(
                """
                DELETE FROM bind_history
                WHERE conversation_id = ?
                  AND id NOT IN (
                    SELECT id
                    FROM bind_history
                    WHERE conversation_id = ?
                    ORDER BY sent_at DESC, rowid DESC
                    LIMIT ?
                  )
                """,
                (conversation_id, conversation_id, self._max_entries),
            )
        return entry


def _row_to_entry(row: sqlite3.Row) -> BindHistoryEntry:
    raw_urls = json.loads(str(row["urls_json"]))
    urls = tuple(str(url) for url in cast(list[object], raw_urls)) if isinstance(raw_urls, list) else ()
    return BindHistoryEntry(
        id=str(row["id"]),
        title=str(row["title"]),
        urls=urls,
        sent_at=str(row["sent_at"]),
    )
