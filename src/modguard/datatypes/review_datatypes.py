"""Data attached to audit notifications so moderators can act on them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID


class ReviewOption(Enum):
    """Manual action offered to moderators below an audit notification."""

    DELETE = "delete"
    BAN = "ban"
    MUTE = "mute"
    UNBAN = "unban"
    UNMUTE = "unmute"
    UNDELETE = "undelete"
    SEE_REASON = "see_reason"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return REVIEW_OPTION_LABELS[self]


REVIEW_OPTION_LABELS = {
    ReviewOption.DELETE: "Delete",
    ReviewOption.BAN: "Ban",
    ReviewOption.MUTE: "Mute",
    ReviewOption.UNBAN: "Unban",
    ReviewOption.UNMUTE: "Unmute",
    ReviewOption.UNDELETE: "Undelete",
    ReviewOption.SEE_REASON: "See Reason",
}


@dataclass(frozen=True, slots=True)
class ReviewRequest:
    """
    Context a moderator needs to confirm or undo an action.

    Attributes:
        chat_id: Chat the flagged message was posted in.
        message_id: The flagged message.
        user_id: Sender of the message.
        sender_name: Mention of the sender used in replies.
        message_text: Original text, re-posted by Undelete.
        reasoning: Classifier reasoning, shown by See Reason.
        options: Buttons to offer.
        sender_chat_id: Set when the message was sent on behalf of a channel.
    """

    chat_id: ChatID
    message_id: MessageID
    user_id: UserID
    sender_name: str
    message_text: str
    reasoning: str | None = None
    options: Tuple[ReviewOption, ...] = field(default_factory=tuple)
    sender_chat_id: ChatID | None = None
