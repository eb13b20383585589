"""
Moderation action log.

Every enforcement attempt, automatic or manual, is recorded so moderators can
look back at what the bot did in their chat.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.util.logger import get_logger

logger = get_logger("moderation_log")


@dataclass(frozen=True, slots=True)
class ModerationLogEntry:
    chat_id: ChatID
    user_id: UserID
    message_id: MessageID | None
    action: str
    trigger: str
    status: str
    reason: str | None = None


class ModerationLog(Protocol):
    async def record(self, entry: ModerationLogEntry) -> None:
        ...

    async def recent(self, chat_id: ChatID, limit: int = 50) -> List[ModerationLogEntry]:
        ...


class SqliteModerationLog:
    """Moderation log stored in the ``moderation_actions`` table."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    async def record(self, entry: ModerationLogEntry) -> None:
        async with self._connection.transaction() as db:
            await db.execute(
                """
                INSERT INTO moderation_actions
                    (chat_id, user_id, message_id, action_kind, action_trigger, status, reason)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.chat_id.to_int(),
                    entry.user_id.to_int(),
                    entry.message_id.to_int() if entry.message_id else None,
                    entry.action,
                    entry.trigger,
                    entry.status,
                    entry.reason,
                ),
            )
        logger.debug("[MODERATION LOG] Recorded %s on %s in %s", entry.action, entry.user_id, entry.chat_id)

    async def recent(self, chat_id: ChatID, limit: int = 50) -> List[ModerationLogEntry]:
        """Return the latest entries of a chat, newest first."""
        async with self._connection.read() as db:
            cursor = await db.execute(
                """
                SELECT chat_id, user_id, message_id, action_kind, action_trigger, status, reason
                FROM moderation_actions
                WHERE chat_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (chat_id.to_int(), limit),
            )
            rows = await cursor.fetchall()

        return [
            ModerationLogEntry(
                chat_id=ChatID(row["chat_id"]),
                user_id=UserID(row["user_id"]),
                message_id=MessageID(row["message_id"]) if row["message_id"] is not None else None,
                action=row["action_kind"],
                trigger=row["action_trigger"],
                status=row["status"],
                reason=row["reason"],
            )
            for row in rows
        ]
