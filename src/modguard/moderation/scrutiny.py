"""Decides whether a message goes to the classifier at all."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from modguard.datatypes.chat_config import ChatModerationConfig


class ScrutinyDecision(Enum):
    CLASSIFY = "classify"
    SKIP_DISABLED = "skip_disabled"
    SKIP_ADMIN = "skip_admin"
    SKIP_TRUSTED = "skip_trusted"

    def __str__(self) -> str:
        return self.value

    @property
    def moderates(self) -> bool:
        """Whether pre-classification signals (blocklist, flood) still apply."""
        return self in (ScrutinyDecision.CLASSIFY, ScrutinyDecision.SKIP_TRUSTED)


@dataclass(frozen=True, slots=True)
class ScrutinyContext:
    """
    Attributes:
        sender_is_admin: Whether the sender administers the chat.
        messages_seen: Messages of this user in this chat before the current one.
    """

    sender_is_admin: bool
    messages_seen: int


def decide_scrutiny(config: ChatModerationConfig, context: ScrutinyContext) -> ScrutinyDecision:
    """
    Gate applied before classification.

    Admins are exempt unless debug mode is on, so moderators can try the
    bot on their own messages. Users who already sent ``first_messages``
    messages are trusted and never classified again.
    """
    if not config.enabled:
        return ScrutinyDecision.SKIP_DISABLED
    if context.sender_is_admin and not config.debug_mode:
        return ScrutinyDecision.SKIP_ADMIN
    if not config.scrutinizes_all_messages and context.messages_seen >= config.first_messages:
        return ScrutinyDecision.SKIP_TRUSTED
    return ScrutinyDecision.CLASSIFY
