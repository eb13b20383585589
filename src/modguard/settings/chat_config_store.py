"""
Per-chat moderation config storage.

Provides the contract the pipeline reads from:

- get(chat_id) -> ChatModerationConfig | None
- insert_or_update(chat_id, config)
- get_and_increment_messages_seen(chat_id, user_id) -> int

Configs are immutable snapshots, so handing the cached object to a reader is
always consistent. Writers of the same chat are serialised with a per-chat
lock; writers of different chats never wait on each other.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from typing import Dict, Protocol

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID, ChatUserKey, UserID
from modguard.errors import ConfigError
from modguard.util.logger import get_logger

logger = get_logger("chat_config_store")


class ChatConfigStore(Protocol):
    async def get(self, chat_id: ChatID) -> ChatModerationConfig | None:
        ...

    async def insert_or_update(self, chat_id: ChatID, config: ChatModerationConfig) -> None:
        ...

    async def get_and_increment_messages_seen(self, chat_id: ChatID, user_id: UserID) -> int:
        """Return how many messages the user sent before this one, then count this one."""
        ...


class _KeyedLocks:
    """Lazily created asyncio lock per key."""

    def __init__(self) -> None:
        self._locks: Dict[object, asyncio.Lock] = {}

    def __call__(self, key: object) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock


class InMemoryChatConfigStore:
    """Store keeping everything in process memory. Used for tests and embedding."""

    def __init__(self, configs: Dict[ChatID, ChatModerationConfig] | None = None) -> None:
        self._configs: Dict[ChatID, ChatModerationConfig] = dict(configs or {})
        self._messages_seen: Dict[ChatUserKey, int] = defaultdict(int)
        self._locks = _KeyedLocks()

    async def get(self, chat_id: ChatID) -> ChatModerationConfig | None:
        return self._configs.get(chat_id)

    async def insert_or_update(self, chat_id: ChatID, config: ChatModerationConfig) -> None:
        async with self._locks(chat_id):
            self._configs[chat_id] = config

    async def get_and_increment_messages_seen(self, chat_id: ChatID, user_id: UserID) -> int:
        key = ChatUserKey(chat_id, user_id)
        seen = self._messages_seen[key]
        self._messages_seen[key] = seen + 1
        return seen


class SqliteChatConfigStore:
    """
    Store persisting configs and message counters through aiosqlite.

    Configs are cached after the first read; the cache is updated on every
    write so the database is only read once per chat.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection
        self._cache: Dict[ChatID, ChatModerationConfig | None] = {}
        self._locks = _KeyedLocks()

    async def get(self, chat_id: ChatID) -> ChatModerationConfig | None:
        if chat_id in self._cache:
            return self._cache[chat_id]

        async with self._locks(chat_id):
            if chat_id in self._cache:
                return self._cache[chat_id]

            async with self._connection.read() as db:
                cursor = await db.execute("SELECT config FROM chat_configs WHERE chat_id = ?", (chat_id.to_int(),))
                row = await cursor.fetchone()

            config = None
            if row is not None:
                try:
                    config = ChatModerationConfig.from_dict(json.loads(row["config"]))
                except (json.JSONDecodeError, ConfigError) as exc:
                    logger.error("[CHAT CONFIG STORE] Stored config of chat %s is invalid: %s", chat_id, exc)
                    raise ConfigError(f"Stored config of chat {chat_id} is invalid") from exc

            self._cache[chat_id] = config
            return config

    async def insert_or_update(self, chat_id: ChatID, config: ChatModerationConfig) -> None:
        payload = json.dumps(config.to_dict())
        async with self._locks(chat_id):
            async with self._connection.transaction() as db:
                await db.execute(
                    """
                    INSERT INTO chat_configs (chat_id, config, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(chat_id) DO UPDATE SET
                        config = excluded.config,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (chat_id.to_int(), payload),
                )
            self._cache[chat_id] = config
        logger.info("[CHAT CONFIG STORE] Saved config of chat %s", chat_id)

    async def get_and_increment_messages_seen(self, chat_id: ChatID, user_id: UserID) -> int:
        async with self._connection.transaction() as db:
            cursor = await db.execute(
                """
                INSERT INTO messages_seen (chat_id, user_id, count)
                VALUES (?, ?, 1)
                ON CONFLICT(chat_id, user_id) DO UPDATE SET count = count + 1
                RETURNING count
                """,
                (chat_id.to_int(), user_id.to_int()),
            )
            row = await cursor.fetchone()
            await cursor.close()
        return int(row["count"]) - 1 if row is not None else 0
