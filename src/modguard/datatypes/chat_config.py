"""
Per-chat moderation configuration.

Configurations are immutable snapshots. Editing a chat means building a new
snapshot with :func:`dataclasses.replace` and handing it to the config store,
so readers always observe a consistent record.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping

from modguard.datatypes.chat_datatypes import ChatID
from modguard.datatypes.moderation_datatypes import ModerationAction, ModerationJudgement
from modguard.errors import ConfigError

# Scrutinize every message a user sends
ALL_MESSAGES: int = sys.maxsize

DEFAULT_FIRST_MESSAGES = 3
DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_PROMPT = (
    "Not allowed: spam, scam, attempt of impersonation, or something that "
    "could be unwelcome to hear from a user who just joined a chat"
)
DEFAULT_DELETION_MESSAGE = (
    "{user}, your message was removed by AI Moderator. Mods have been notified "
    "and will review it shortly if it was a mistake"
)


def default_actions() -> Dict[ModerationJudgement, ModerationAction]:
    return {
        ModerationJudgement.GOOD: ModerationAction.OK,
        ModerationJudgement.INFORM: ModerationAction.DELETE,
        ModerationJudgement.SUSPICIOUS: ModerationAction.TEMP_MUTE,
        ModerationJudgement.HARMFUL: ModerationAction.BAN,
    }


def normalize_blocklist(words) -> tuple[str, ...]:
    """Lowercase, deduplicate and sort blocklist tokens, dropping blanks.

    Raises:
        ConfigError: If ``words`` is a single string rather than a list of tokens.
    """
    if isinstance(words, (str, bytes)):
        raise ConfigError(f"word_blocklist must be a list of words, got {words!r}")
    return tuple(sorted({str(word).strip().lower() for word in words if str(word).strip()}))


@dataclass(frozen=True, slots=True)
class ChatModerationConfig:
    """
    Moderation settings of one chat.

    Attributes:
        enabled: Master switch for moderation in this chat.
        prompt: Free-text rules appended to the classifier instructions.
        model: Classification model selected for the chat.
        actions: Judgement to action table. Missing judgements are treated as OK.
        first_messages: How many of a user's first messages are classified.
            ``ALL_MESSAGES`` classifies everything.
        debug_mode: Route every automatic action to moderators instead of
            enforcing it.
        silent: Do not post the deletion notice in the chat.
        moderator_chat: Where audit text and review requests go. Defaults to
            the moderated chat itself.
        word_blocklist: Sorted lowercase tokens that trigger a fixed mute.
        mute_flood: Mute users flagged by the flood guard.
        block_mostly_emoji_messages: Delete messages made mostly of emoji.
        block_forwarded_stories: Treat forwarded stories as suspicious.
        deletion_message: Notice template, ``{user}`` is replaced by a mention.
        delete_join_leave_messages: Remove member join and leave system messages.
        ban_command: Allow moderators to use the /ban command.
        mute_command: Allow moderators to use the /mute command.
        del_command: Allow moderators to delete messages through the bot.
        report_command: Allow members to report messages to moderators.
    """

    enabled: bool = True
    prompt: str = DEFAULT_PROMPT
    model: str = DEFAULT_MODEL
    actions: Mapping[ModerationJudgement, ModerationAction] = field(default_factory=default_actions)
    first_messages: int = DEFAULT_FIRST_MESSAGES
    debug_mode: bool = True
    silent: bool = False
    moderator_chat: ChatID | None = None
    word_blocklist: tuple[str, ...] = ()
    mute_flood: bool = True
    block_mostly_emoji_messages: bool = False
    block_forwarded_stories: bool = False
    deletion_message: str = DEFAULT_DELETION_MESSAGE
    delete_join_leave_messages: bool = False
    ban_command: bool = True
    mute_command: bool = True
    del_command: bool = True
    report_command: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", MappingProxyType(dict(self.actions)))
        object.__setattr__(self, "word_blocklist", normalize_blocklist(self.word_blocklist))
        if self.first_messages < 0:
            raise ConfigError(f"first_messages must not be negative, got {self.first_messages}")

    def action_for(self, judgement: ModerationJudgement) -> ModerationAction:
        return self.actions.get(judgement, ModerationAction.OK)

    @property
    def scrutinizes_all_messages(self) -> bool:
        return self.first_messages == ALL_MESSAGES

    def with_changes(self, **changes: Any) -> "ChatModerationConfig":
        """Return a new snapshot with the given fields replaced."""
        return replace(self, **changes)

    # --------------------------
    # Serialization
    # --------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "prompt": self.prompt,
            "model": self.model,
            "actions": {judgement.value: action.value for judgement, action in self.actions.items()},
            "first_messages": None if self.scrutinizes_all_messages else self.first_messages,
            "debug_mode": self.debug_mode,
            "silent": self.silent,
            "moderator_chat": self.moderator_chat.to_int() if self.moderator_chat else None,
            "word_blocklist": list(self.word_blocklist),
            "mute_flood": self.mute_flood,
            "block_mostly_emoji_messages": self.block_mostly_emoji_messages,
            "block_forwarded_stories": self.block_forwarded_stories,
            "deletion_message": self.deletion_message,
            "delete_join_leave_messages": self.delete_join_leave_messages,
            "ban_command": self.ban_command,
            "mute_command": self.mute_command,
            "del_command": self.del_command,
            "report_command": self.report_command,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatModerationConfig":
        """Build a config from a stored mapping, filling defaults for missing keys.

        Raises:
            ConfigError: If a value cannot be interpreted.
        """
        defaults = cls()
        try:
            raw_actions = data.get("actions")
            actions = dict(defaults.actions)
            if raw_actions:
                for judgement_name, action_name in raw_actions.items():
                    actions[ModerationJudgement.parse(judgement_name)] = ModerationAction(action_name)

            first_messages = data.get("first_messages", defaults.first_messages)
            moderator_chat = data.get("moderator_chat")

            return cls(
                enabled=bool(data.get("enabled", defaults.enabled)),
                prompt=str(data.get("prompt", defaults.prompt)),
                model=str(data.get("model", defaults.model)),
                actions=actions,
                first_messages=ALL_MESSAGES if first_messages is None else int(first_messages),
                debug_mode=bool(data.get("debug_mode", defaults.debug_mode)),
                silent=bool(data.get("silent", defaults.silent)),
                moderator_chat=ChatID(moderator_chat) if moderator_chat is not None else None,
                word_blocklist=data.get("word_blocklist") or (),
                mute_flood=bool(data.get("mute_flood", defaults.mute_flood)),
                block_mostly_emoji_messages=bool(
                    data.get("block_mostly_emoji_messages", defaults.block_mostly_emoji_messages)
                ),
                block_forwarded_stories=bool(data.get("block_forwarded_stories", defaults.block_forwarded_stories)),
                deletion_message=str(data.get("deletion_message", defaults.deletion_message)),
                delete_join_leave_messages=bool(
                    data.get("delete_join_leave_messages", defaults.delete_join_leave_messages)
                ),
                ban_command=bool(data.get("ban_command", defaults.ban_command)),
                mute_command=bool(data.get("mute_command", defaults.mute_command)),
                del_command=bool(data.get("del_command", defaults.del_command)),
                report_command=bool(data.get("report_command", defaults.report_command)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid chat moderation config: {exc}") from exc
