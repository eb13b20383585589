"""
Commands moderators (and, for reports, members) run by hand.

Each command checks the chat's toggle and the invoker's rights, runs the
matching executor primitive and returns the reply to show the invoker. The
Discord cog only translates interactions into these calls.

- ban: ban a member and remove the messages the flood guard recorded
- mute: mute a member for a chosen duration, or indefinitely
- delete: remove one message
- report: forward a message to the moderators with Delete and Ban buttons
- history: list the latest moderation actions of the chat
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Dict, List

from modguard.database.moderation_log import ModerationLog, ModerationLogEntry
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID, MessageID
from modguard.datatypes.moderation_datatypes import EnforcementTarget, ResolvedActionKind
from modguard.datatypes.review_datatypes import ReviewOption, ReviewRequest
from modguard.errors import PlatformError
from modguard.moderation import audit_messages
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.settings.chat_config_store import ChatConfigStore
from modguard.util.logger import get_logger

logger = get_logger("moderator_commands")

FOREVER = "Forever"

MUTE_DURATIONS: Dict[str, datetime.timedelta | None] = {
    "60 secs": datetime.timedelta(seconds=60),
    "5 mins": datetime.timedelta(minutes=5),
    "10 mins": datetime.timedelta(minutes=10),
    "30 mins": datetime.timedelta(minutes=30),
    "1 hour": datetime.timedelta(hours=1),
    "2 hours": datetime.timedelta(hours=2),
    "1 day": datetime.timedelta(days=1),
    "1 week": datetime.timedelta(weeks=1),
    FOREVER: None,
}

NOT_SET_UP = "Moderation is not set up in this chat."
COMMAND_DISABLED = "This command is disabled in this chat."
NO_BAN_RIGHT = "You don't have the permission to ban users."
NO_MUTE_RIGHT = "You don't have the permission to mute users."
NO_DELETE_RIGHT = "You don't have the permission to delete messages."
NO_HISTORY_RIGHT = "You don't have the permission to view the moderation history."
NO_HISTORY = "No moderation actions were recorded in this chat yet."


def parse_mute_duration(label: str) -> datetime.timedelta | None:
    """Map a duration choice to a timedelta, None meaning indefinite.

    Raises:
        ValueError: If the label is not one of ``MUTE_DURATIONS``.
    """
    if label not in MUTE_DURATIONS:
        raise ValueError(f"Unknown mute duration: {label!r}")
    return MUTE_DURATIONS[label]


def format_history_entry(entry: ModerationLogEntry) -> str:
    line = f"{entry.action} on {entry.user_id} ({entry.trigger}): {entry.status}"
    if entry.reason:
        line += f" - {entry.reason}"
    return line


@dataclass(frozen=True, slots=True)
class CommandInvoker:
    """Who ran a command and which moderator rights they hold in the chat."""

    name: str
    can_ban: bool = False
    can_mute: bool = False
    can_delete: bool = False


@dataclass(frozen=True, slots=True)
class ReportedMessage:
    chat_id: ChatID
    message_id: MessageID
    target: EnforcementTarget
    text: str


class ModeratorCommands:
    """
    Args:
        executor: Executor whose primitives carry out the commands.
        config_store: Source of the per-chat command toggles.
        default_config: Config for chats with nothing stored, as in the pipeline.
        action_log: Log read by the history command.
    """

    def __init__(
        self,
        executor: EnforcementExecutor,
        config_store: ChatConfigStore,
        default_config: ChatModerationConfig | None = None,
        action_log: ModerationLog | None = None,
    ) -> None:
        self.executor = executor
        self.config_store = config_store
        self.default_config = default_config
        self.action_log = action_log

    async def _config(self, chat_id: ChatID) -> ChatModerationConfig | None:
        return await self.config_store.get(chat_id) or self.default_config

    async def _refusal(self, chat_id: ChatID, toggle: str) -> tuple[str | None, ChatModerationConfig | None]:
        config = await self._config(chat_id)
        if config is None or not config.enabled:
            return NOT_SET_UP, None
        if not getattr(config, toggle):
            return COMMAND_DISABLED, None
        return None, config

    async def ban(self, chat_id: ChatID, invoker: CommandInvoker, target: EnforcementTarget) -> str:
        refusal, _ = await self._refusal(chat_id, "ban_command")
        if refusal:
            return refusal
        if not invoker.can_ban:
            return NO_BAN_RIGHT

        outcome = await self.executor.ban(chat_id, target)
        await self.executor.record_manual("ban", chat_id, target, None, outcome, invoker.name)
        logger.info("[COMMANDS] %s banned %s in %s: %s", invoker.name, target.user_id, chat_id, outcome.status)
        if not outcome.succeeded:
            return audit_messages.build_failure_text(ResolvedActionKind.BAN, outcome.message)
        if outcome.deleted_count:
            return f"Banned {target.mention} and removed {outcome.deleted_count} of their recent messages."
        return f"Banned {target.mention}."

    async def mute(
        self, chat_id: ChatID, invoker: CommandInvoker, target: EnforcementTarget, duration: datetime.timedelta | None
    ) -> str:
        refusal, _ = await self._refusal(chat_id, "mute_command")
        if refusal:
            return refusal
        if not invoker.can_mute:
            return NO_MUTE_RIGHT

        outcome = await self.executor.mute(chat_id, target, duration)
        await self.executor.record_manual("mute", chat_id, target, None, outcome, invoker.name)
        logger.info("[COMMANDS] %s muted %s in %s: %s", invoker.name, target.user_id, chat_id, outcome.status)
        if not outcome.succeeded:
            return audit_messages.build_failure_text(ResolvedActionKind.MUTE, outcome.message)
        if duration is None:
            return f"Muted {target.mention} forever."
        return f"Muted {target.mention} for {audit_messages.format_duration(duration)}."

    async def delete(self, invoker: CommandInvoker, message: ReportedMessage) -> str:
        refusal, _ = await self._refusal(message.chat_id, "del_command")
        if refusal:
            return refusal
        if not invoker.can_delete:
            return NO_DELETE_RIGHT

        outcome = await self.executor.delete(message.chat_id, message.message_id)
        await self.executor.record_manual(
            "delete", message.chat_id, message.target, message.message_id, outcome, invoker.name
        )
        if not outcome.succeeded:
            return audit_messages.build_failure_text(ResolvedActionKind.DELETE, outcome.message)
        return "Deleted."

    async def report(self, invoker: CommandInvoker, message: ReportedMessage) -> str:
        """Post the message to the moderators with Delete and Ban buttons. Any member may report."""
        refusal, config = await self._refusal(message.chat_id, "report_command")
        if refusal:
            return refusal

        review = ReviewRequest(
            chat_id=message.chat_id,
            message_id=message.message_id,
            user_id=message.target.user_id,
            sender_name=message.target.mention,
            message_text=message.text,
            options=(ReviewOption.DELETE, ReviewOption.BAN),
            sender_chat_id=message.target.sender_chat_id,
        )
        has_moderator_chat = config.moderator_chat is not None
        text = audit_messages.build_report_text(invoker.name, message.target.mention, message.text, has_moderator_chat)
        try:
            await self.executor.platform.send_message(config.moderator_chat or message.chat_id, text, review)
        except PlatformError as exc:
            logger.warning("[COMMANDS] Could not forward report from %s: %s", invoker.name, exc.text)
            return audit_messages.build_failure_text(ResolvedActionKind.ROUTE_TO_MODERATOR, exc.text)
        logger.info("[COMMANDS] %s reported message %s in %s", invoker.name, message.message_id, message.chat_id)
        return "Reported this message to the moderators."

    async def history(self, chat_id: ChatID, invoker: CommandInvoker, limit: int = 10) -> str:
        """Latest moderation actions of the chat, newest first."""
        if not (invoker.can_ban or invoker.can_mute or invoker.can_delete):
            return NO_HISTORY_RIGHT
        if self.action_log is None:
            return NO_HISTORY

        entries: List[ModerationLogEntry] = await self.action_log.recent(chat_id, limit)
        if not entries:
            return NO_HISTORY
        return "\n".join(format_history_entry(entry) for entry in entries)
