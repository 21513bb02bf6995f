from __future__ import annotations

from bindery.repositories.common import utc_now_iso
from bindery.repositories.database import Database


class DestinationRepository:
    """Maps a conversation to the Kindle address its ebooks are mailed to."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_email(self, conversation_id: str) -> str | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT email
                FROM destinations
                WHERE conversation_id = ?
                """,
                (conversation_id,),
            ).fetchone()

        if row is None:
            return None
        return str(row["email"])

    def set_email(self, conversation_id: str, email: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO destinations (conversation_id, email, updated_at)
                VALUES (?, ?, ?)
                """,
                (conversation_id, email, utc_now_iso()),
            )

    def clear_email(self, conversation_id: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM destinations WHERE conversation_id = ?",
                (conversation_id,),
            )
            return cursor.rowcount > 0
