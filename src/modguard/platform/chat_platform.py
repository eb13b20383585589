"""
Boundary between the moderation core and a concrete chat platform.

Every call may raise :class:`~modguard.errors.PlatformError` carrying the
platform's error text, which the enforcement executor reports back to
moderators.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Protocol, Sequence

from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.review_datatypes import ReviewRequest


@dataclass(frozen=True, slots=True)
class BotPermissions:
    """Rights of the bot's own identity in a chat."""

    can_delete_messages: bool = False
    can_restrict_members: bool = False
    can_ban_members: bool = False


class ChatPlatform(Protocol):
    # Largest number of messages accepted by one delete_messages call
    max_batch_delete: int

    async def get_bot_permissions(self, chat_id: ChatID) -> BotPermissions:
        ...

    async def get_chat_title(self, chat_id: ChatID) -> str:
        ...

    async def delete_message(self, chat_id: ChatID, message_id: MessageID) -> None:
        ...

    async def delete_messages(self, chat_id: ChatID, message_ids: Sequence[MessageID]) -> None:
        """Delete at most ``max_batch_delete`` messages in one call."""
        ...

    async def restrict_member(
        self, chat_id: ChatID, user_id: UserID, until: datetime.datetime | None = None
    ) -> None:
        """Stop a member from sending messages, until ``until`` or indefinitely."""
        ...

    async def unrestrict_member(self, chat_id: ChatID, user_id: UserID) -> None:
        ...

    async def ban_member(self, chat_id: ChatID, user_id: UserID) -> None:
        ...

    async def unban_member(self, chat_id: ChatID, user_id: UserID) -> None:
        ...

    async def ban_sender_chat(self, chat_id: ChatID, sender_chat_id: ChatID) -> None:
        ...

    async def unban_sender_chat(self, chat_id: ChatID, sender_chat_id: ChatID) -> None:
        ...

    async def send_message(self, chat_id: ChatID, text: str, review: ReviewRequest | None = None) -> MessageID:
        """Post ``text``, attaching review buttons when ``review`` is given."""
        ...
