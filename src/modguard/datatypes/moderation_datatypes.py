"""
Data structures flowing through the moderation pipeline.

A message enters as a :class:`ModerationMessage`, may be classified into a
:class:`ModerationVerdict`, is turned into a :class:`ResolvedAction` and
finally produces an :class:`EnforcementOutcome`.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum

from modguard.datatypes.chat_datatypes import ChatID, ChatUserKey, MessageID, UserID


class ModerationJudgement(Enum):
    """Categorical verdict returned by the judgement service."""

    GOOD = "Good"
    INFORM = "Inform"
    SUSPICIOUS = "Suspicious"
    HARMFUL = "Harmful"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: str) -> "ModerationJudgement":
        """Parse a judgement name, accepting the legacy aliases.

        Raises:
            ValueError: If the name is not a known judgement or alias.
        """
        name = raw.strip()
        for judgement in cls:
            if judgement.value.lower() == name.lower():
                return judgement
        alias = JUDGEMENT_ALIASES.get(name.lower())
        if alias is None:
            raise ValueError(f"Unknown judgement: {raw!r}")
        return alias


JUDGEMENT_ALIASES: dict[str, ModerationJudgement] = {
    "acceptable": ModerationJudgement.GOOD,
    "morecontextneeded": ModerationJudgement.GOOD,
    "spam": ModerationJudgement.HARMFUL,
    "unsafe": ModerationJudgement.HARMFUL,
}


class ModerationAction(Enum):
    """Action a chat configures for a judgement."""

    BAN = "ban"
    MUTE = "mute"
    TEMP_MUTE = "temp_mute"
    DELETE = "delete"
    WARN_MODS = "warn_mods"
    OK = "ok"

    def __str__(self) -> str:
        return self.value


class MessageKind(Enum):
    """Coarse kind of an inbound message."""

    TEXT = "text"
    MEDIA = "media"
    SYSTEM = "system"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ModerationImage:
    """Reference to an image attached to a message."""

    url: str
    mime_type: str | None = None


@dataclass(frozen=True, slots=True)
class ModerationMessage:
    """Platform independent view of one inbound message.

    Attributes:
        chat_id: Chat the message was posted in.
        message_id: Identifier of the message within the chat.
        user_id: Account that sent the message.
        sender_name: Display text used to refer to the sender in audit text.
        text: Message text or caption, empty when there is none.
        kind: Text, media, or a system event (joins, pins, ...).
        image: First attached image, if any.
        sender_chat_id: Set when the message was posted on behalf of a
            channel or group rather than by the user directly.
        sender_is_admin: Whether the sender administers the chat.
        is_forwarded_story: Whether the message is a forwarded story.
        chat_title: Title of the chat when the platform delivers it.
        is_join_or_leave: Whether a system message announces a member joining
            or leaving.
    """

    chat_id: ChatID
    message_id: MessageID
    user_id: UserID
    sender_name: str
    text: str = ""
    kind: MessageKind = MessageKind.TEXT
    image: ModerationImage | None = None
    sender_chat_id: ChatID | None = None
    sender_is_admin: bool = False
    is_forwarded_story: bool = False
    chat_title: str | None = None
    is_join_or_leave: bool = False

    @property
    def key(self) -> ChatUserKey:
        return ChatUserKey(self.chat_id, self.user_id)

    @property
    def is_anonymous_sender(self) -> bool:
        """True when posted on behalf of another chat, which cannot be muted."""
        return self.sender_chat_id is not None and self.sender_chat_id != self.chat_id


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    """Result of classifying one message. Never persisted."""

    judgement: ModerationJudgement
    reasoning: str | None
    message_text: str
    image: ModerationImage | None = None

    @classmethod
    def fail_open(cls, message_text: str, image: ModerationImage | None = None) -> "ModerationVerdict":
        return cls(ModerationJudgement.GOOD, None, message_text, image)


class ResolvedActionKind(Enum):
    """Enforcement decision computed for a single message."""

    ALLOW = "allow"
    DELETE = "delete"
    MUTE = "mute"
    BAN = "ban"
    ROUTE_TO_MODERATOR = "route_to_moderator"

    def __str__(self) -> str:
        return self.value


class ActionTrigger(Enum):
    """Signal that produced a resolved action."""

    NONE = "none"
    WORD_BLOCKLIST = "word_blocklist"
    FLOOD = "flood"
    MOSTLY_EMOJI = "mostly_emoji"
    CLASSIFICATION = "classification"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ResolvedAction:
    """
    One enforcement decision.

    ``proposed`` holds the action a moderator would confirm when ``kind`` is
    ROUTE_TO_MODERATOR because of debug mode, or None for a plain warning.
    ``duration`` only applies to MUTE; None means indefinite.
    """

    kind: ResolvedActionKind
    trigger: ActionTrigger = ActionTrigger.NONE
    duration: datetime.timedelta | None = None
    proposed: "ResolvedAction | None" = None
    send_notice: bool = False
    anonymous_downgrade: bool = False

    @classmethod
    def allow(cls, trigger: ActionTrigger = ActionTrigger.NONE) -> "ResolvedAction":
        return cls(ResolvedActionKind.ALLOW, trigger)

    @property
    def is_allow(self) -> bool:
        return self.kind is ResolvedActionKind.ALLOW


class EnforcementStatus(Enum):
    """How an enforcement attempt ended."""

    SUCCESS = "success"
    ALREADY_APPLIED = "already_applied"
    PERMISSION_DENIED = "permission_denied"
    PLATFORM_ERROR = "platform_error"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class EnforcementOutcome:
    """Result of executing a resolved action or a manual review action."""

    status: EnforcementStatus
    message: str = ""
    deleted_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in (EnforcementStatus.SUCCESS, EnforcementStatus.ALREADY_APPLIED)

    @classmethod
    def success(cls, message: str = "", deleted_count: int = 0) -> "EnforcementOutcome":
        return cls(EnforcementStatus.SUCCESS, message, deleted_count)


@dataclass(frozen=True, slots=True)
class EnforcementTarget:
    """The user, or the sender chat, an action is taken against."""

    user_id: UserID
    mention: str
    sender_chat_id: ChatID | None = None

    @classmethod
    def from_message(cls, message: ModerationMessage) -> "EnforcementTarget":
        sender_chat = message.sender_chat_id if message.is_anonymous_sender else None
        return cls(message.user_id, message.sender_name, sender_chat)

    @property
    def is_sender_chat(self) -> bool:
        return self.sender_chat_id is not None
