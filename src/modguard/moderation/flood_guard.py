"""
In-memory flood and duplicate-content detection.

The flood guard runs before any external call so it bounds the cost of a
spam wave even when the classifier is slow or down. It combines three
signals, checked in order and short-circuiting on the first hit:

1. a per (chat, user) token bucket,
2. a chat-wide window of the last messages (many users posting the same text),
3. a per-user window of recent messages (one user repeating themselves).

The duplicate windows only look at messages that carry text.

State is keyed per chat and per (chat, user); every key owns its own lock so
writers for different keys never wait on each other.

The message-id ledger used for ban cleanup is kept apart from the per-user
duplicate window: the window forgets entries after one minute, the ledger
only forgets ids once the count cap is reached.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Tuple

from modguard.datatypes.chat_datatypes import ChatID, ChatUserKey, MessageID, UserID
from modguard.util.logger import get_logger

logger = get_logger("flood_guard")


@dataclass(frozen=True, slots=True)
class FloodGuardLimits:
    """Thresholds of the flood guard."""

    bucket_capacity: float = 3.0
    refill_per_second: float = 1.0
    chat_window_size: int = 50
    chat_duplicate_threshold: int = 10
    user_window_seconds: float = 60.0
    user_duplicate_threshold: int = 3
    user_history_cap: int = 5000


@dataclass(slots=True)
class TokenBucket:
    """Classic token bucket. ``tokens`` stays within [0, capacity]."""

    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def try_consume(self, now: float) -> bool:
        """Refill, then take one token. Returns False when the bucket is empty."""
        self.refill(now)
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


@dataclass(slots=True)
class RecentUserMessage:
    text: str
    timestamp: float
    message_id: MessageID


@dataclass(slots=True)
class _UserState:
    bucket: TokenBucket
    recent: Deque[RecentUserMessage] = field(default_factory=deque)
    ledger: Deque[MessageID] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass(slots=True)
class _ChatState:
    recent_texts: Deque[str]
    last_seen: float
    lock: threading.Lock = field(default_factory=threading.Lock)


class FloodGuard:
    """
    Per-key rate limiter and duplicate detector.

    Args:
        limits: Thresholds to apply. Defaults match the production values.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(self, limits: FloodGuardLimits | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.limits = limits or FloodGuardLimits()
        self._clock = clock
        self._users: Dict[ChatUserKey, _UserState] = {}
        self._chats: Dict[ChatID, _ChatState] = {}

    # --------------------------
    # State lookup
    # --------------------------
    def _user_state(self, key: ChatUserKey, now: float) -> _UserState:
        state = self._users.get(key)
        if state is None:
            bucket = TokenBucket(
                tokens=self.limits.bucket_capacity,
                capacity=self.limits.bucket_capacity,
                refill_rate=self.limits.refill_per_second,
                last_refill=now,
            )
            # setdefault is atomic, so racing creators end up sharing one state
            state = self._users.setdefault(key, _UserState(bucket=bucket))
        return state

    def _chat_state(self, chat_id: ChatID, now: float) -> _ChatState:
        state = self._chats.get(chat_id)
        if state is None:
            state = self._chats.setdefault(
                chat_id, _ChatState(recent_texts=deque(maxlen=self.limits.chat_window_size), last_seen=now)
            )
        return state

    def _append_ledger(self, user: _UserState, message_id: MessageID) -> None:
        user.ledger.append(message_id)
        while len(user.ledger) > self.limits.user_history_cap:
            user.ledger.popleft()

    # --------------------------
    # Public API
    # --------------------------
    def record_message(self, chat_id: ChatID, user_id: UserID, message_id: MessageID) -> None:
        """Add a message id to the user's ledger without any flood checks.

        Used for system events, which are neither rate limited nor compared
        as duplicates but are still removed by ban cleanup.
        """
        now = self._clock()
        user = self._user_state(ChatUserKey(chat_id, user_id), now)
        with user.lock:
            self._append_ledger(user, message_id)

    def check(self, chat_id: ChatID, user_id: UserID, message_text: str, message_id: MessageID) -> bool:
        """
        Record a message and report whether it is part of a flood.

        Every call records the message id in the user's ledger. The duplicate
        windows are only updated by the steps that actually run, and messages
        without text (photos, stickers) skip them entirely.

        Returns:
            bool: True when the message should be treated as flood.
        """
        now = self._clock()
        key = ChatUserKey(chat_id, user_id)
        user = self._user_state(key, now)

        with user.lock:
            self._append_ledger(user, message_id)
            if not user.bucket.try_consume(now):
                logger.debug("[FLOOD GUARD] Rate limit hit for %s", key)
                return True

        # Captionless media all share the empty text and are never copies of each other
        if not message_text.strip():
            return False

        chat = self._chat_state(chat_id, now)
        with chat.lock:
            # Thresholds count the current message as one of the copies
            chat_count = chat.recent_texts.count(message_text) + 1
            chat.recent_texts.append(message_text)
            chat.last_seen = now
        if chat_count >= self.limits.chat_duplicate_threshold:
            logger.debug("[FLOOD GUARD] Chat-wide duplicate in %s (%d copies)", chat_id, chat_count)
            return True

        with user.lock:
            horizon = now - self.limits.user_window_seconds
            while user.recent and user.recent[0].timestamp < horizon:
                user.recent.popleft()

            user_count = sum(1 for entry in user.recent if entry.text == message_text) + 1
            user.recent.append(RecentUserMessage(message_text, now, message_id))
            while len(user.recent) > self.limits.user_history_cap:
                user.recent.popleft()

        if user_count >= self.limits.user_duplicate_threshold:
            logger.debug("[FLOOD GUARD] Repeated message from %s (%d copies)", key, user_count)
            return True
        return False

    def get_user_message_ids(self, chat_id: ChatID, user_id: UserID) -> List[MessageID]:
        """Return the ids recorded for a user in a chat, oldest first."""
        state = self._users.get(ChatUserKey(chat_id, user_id))
        if state is None:
            return []
        with state.lock:
            return list(state.ledger)

    def evict_idle(self, max_idle_seconds: float) -> int:
        """
        Drop state that cannot influence future decisions.

        A user qualifies when their bucket would be full again, nothing was
        recorded for ``max_idle_seconds`` and no duplicate-window entry is
        still live. A chat qualifies when no text was posted in it for
        ``max_idle_seconds``.

        Returns:
            int: Number of evicted users and chats.
        """
        now = self._clock()
        evicted_users: List[Tuple[ChatUserKey, _UserState]] = []
        for key, state in list(self._users.items()):
            with state.lock:
                idle_for = now - state.bucket.last_refill
                refilled = state.bucket.tokens + idle_for * state.bucket.refill_rate
                window_live = bool(state.recent) and state.recent[-1].timestamp >= now - self.limits.user_window_seconds
                if idle_for >= max_idle_seconds and refilled >= state.bucket.capacity and not window_live:
                    evicted_users.append((key, state))

        evicted_chats: List[Tuple[ChatID, _ChatState]] = []
        for chat_id, chat in list(self._chats.items()):
            with chat.lock:
                if now - chat.last_seen >= max_idle_seconds:
                    evicted_chats.append((chat_id, chat))

        # Only remove the exact state we inspected
        for key, state in evicted_users:
            if self._users.get(key) is state:
                del self._users[key]
        for chat_id, chat in evicted_chats:
            if self._chats.get(chat_id) is chat:
                del self._chats[chat_id]

        if evicted_users or evicted_chats:
            logger.info(
                "[FLOOD GUARD] Evicted %d idle users and %d idle chats", len(evicted_users), len(evicted_chats)
            )
        return len(evicted_users) + len(evicted_chats)
