"""
Pluggable choice of the classification model.

The engine asks the policy which model to use for a chat, and which model to
retry with after a failure. Keeping this behind a protocol lets deployments
swap quota rules without touching the engine.
"""

from __future__ import annotations

import datetime
import threading
from typing import Callable, Dict, Protocol

from modguard.datatypes.chat_datatypes import ChatID
from modguard.util.logger import get_logger

logger = get_logger("model_selection")


class ModelSelectionPolicy(Protocol):
    def select(self, chat_id: ChatID, configured_model: str) -> str:
        """Return the model to classify the next message of ``chat_id`` with."""
        ...

    def fallback(self, model: str) -> str | None:
        """Return the model to retry with after ``model`` failed, or None."""
        ...


class ConfiguredModelPolicy:
    """Always use the chat's configured model, optionally retrying on a fallback."""

    def __init__(self, fallback_model: str | None = None) -> None:
        self.fallback_model = fallback_model

    def select(self, chat_id: ChatID, configured_model: str) -> str:
        return configured_model

    def fallback(self, model: str) -> str | None:
        if self.fallback_model and self.fallback_model != model:
            return self.fallback_model
        return None


class DailyQuotaModelPolicy(ConfiguredModelPolicy):
    """
    Use the configured model for the first ``daily_quota`` messages of a chat
    each day, then switch to the fallback model until the day rolls over.

    Args:
        daily_quota: Messages per chat per day allowed on the configured model.
        fallback_model: Cheaper model used once the quota is spent.
        today: Returns the current date, injectable for tests.
    """

    def __init__(
        self,
        daily_quota: int,
        fallback_model: str,
        today: Callable[[], datetime.date] = lambda: datetime.datetime.now(datetime.timezone.utc).date(),
    ) -> None:
        super().__init__(fallback_model)
        self.daily_quota = daily_quota
        self._today = today
        self._day: datetime.date | None = None
        self._usage: Dict[ChatID, int] = {}
        self._lock = threading.Lock()

    def select(self, chat_id: ChatID, configured_model: str) -> str:
        if configured_model == self.fallback_model:
            return configured_model

        with self._lock:
            today = self._today()
            if today != self._day:
                self._day = today
                self._usage.clear()

            used = self._usage.get(chat_id, 0)
            if used >= self.daily_quota:
                if used == self.daily_quota:
                    logger.info(
                        "[MODEL SELECTION] Chat %s spent its daily quota of %s; using %s",
                        chat_id, configured_model, self.fallback_model,
                    )
                    self._usage[chat_id] = used + 1
                return self.fallback_model  # type: ignore[return-value]

            self._usage[chat_id] = used + 1
            return configured_model
