"""
Messages the bot posted and must remove later.

Deletion notices live for a minute. Keeping their removal time in the
database lets a restarted bot finish the cleanup instead of leaving the
notices in the chat for good.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Dict, List, Protocol, Tuple

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.chat_datatypes import ChatID, MessageID
from modguard.util.logger import get_logger

logger = get_logger("scheduled_deletions")


@dataclass(frozen=True, slots=True)
class ScheduledDeletion:
    chat_id: ChatID
    message_id: MessageID
    delete_at: datetime.datetime


class ScheduledDeletionStore(Protocol):
    async def schedule(self, deletion: ScheduledDeletion) -> None:
        ...

    async def remove(self, chat_id: ChatID, message_id: MessageID) -> None:
        ...

    async def pending(self) -> List[ScheduledDeletion]:
        """Return every deletion not yet carried out, earliest first."""
        ...


class InMemoryScheduledDeletions:
    """Store that forgets everything on restart. Used for tests and embedding."""

    def __init__(self) -> None:
        self._entries: Dict[Tuple[ChatID, MessageID], ScheduledDeletion] = {}

    async def schedule(self, deletion: ScheduledDeletion) -> None:
        self._entries[(deletion.chat_id, deletion.message_id)] = deletion

    async def remove(self, chat_id: ChatID, message_id: MessageID) -> None:
        self._entries.pop((chat_id, message_id), None)

    async def pending(self) -> List[ScheduledDeletion]:
        return sorted(self._entries.values(), key=lambda entry: entry.delete_at)


class SqliteScheduledDeletions:
    """Deletions stored in the ``scheduled_deletions`` table."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    async def schedule(self, deletion: ScheduledDeletion) -> None:
        async with self._connection.transaction() as db:
            await db.execute(
                """
                INSERT INTO scheduled_deletions (chat_id, message_id, delete_at)
                VALUES (?, ?, ?)
                ON CONFLICT(chat_id, message_id) DO UPDATE SET delete_at = excluded.delete_at
                """,
                (deletion.chat_id.to_int(), deletion.message_id.to_int(), deletion.delete_at.timestamp()),
            )
        logger.debug("[SCHEDULED DELETIONS] Message %s in %s scheduled", deletion.message_id, deletion.chat_id)

    async def remove(self, chat_id: ChatID, message_id: MessageID) -> None:
        async with self._connection.transaction() as db:
            await db.execute(
                "DELETE FROM scheduled_deletions WHERE chat_id = ? AND message_id = ?",
                (chat_id.to_int(), message_id.to_int()),
            )

    async def pending(self) -> List[ScheduledDeletion]:
        async with self._connection.read() as db:
            cursor = await db.execute(
                "SELECT chat_id, message_id, delete_at FROM scheduled_deletions ORDER BY delete_at"
            )
            rows = await cursor.fetchall()

        return [
            ScheduledDeletion(
                chat_id=ChatID(row["chat_id"]),
                message_id=MessageID(row["message_id"]),
                delete_at=datetime.datetime.fromtimestamp(row["delete_at"], datetime.timezone.utc),
            )
            for row in rows
        ]
