"""Plain-text audit and notice messages produced by the pipeline."""

from __future__ import annotations

import datetime
from typing import Tuple

from modguard.datatypes.moderation_datatypes import (
    ActionTrigger,
    ModerationMessage,
    ModerationVerdict,
    ResolvedAction,
    ResolvedActionKind,
)
from modguard.datatypes.review_datatypes import ReviewOption

TESTING_MODE_NOTE = "(testing mode is enabled, so nothing was actually done)"
NOT_FLAGGED_NOTE = "(you won't get alerts for non-spam messages when you disable testing mode)"
MODERATOR_CHAT_HINT = (
    "Tip: set a moderator chat so these notifications are not posted in the group itself."
)
ANONYMOUS_SENDER_NOTE = (
    "Note: this message was sent on behalf of a channel, which cannot be muted, "
    "so a stricter or lighter action was used instead."
)

TRIGGER_DESCRIPTIONS = {
    ActionTrigger.WORD_BLOCKLIST: "it contains a blocked word",
    ActionTrigger.FLOOD: "it was detected as flood",
    ActionTrigger.MOSTLY_EMOJI: "it consists mostly of emoji",
    ActionTrigger.CLASSIFICATION: "it was flagged",
    ActionTrigger.NONE: "it was flagged",
}


def format_duration(duration: datetime.timedelta) -> str:
    """Render a duration the way audit text uses it, e.g. ``15 minutes`` or ``1 hour``."""
    seconds = int(duration.total_seconds())
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


def describe_action(action: ResolvedAction) -> str:
    """Past participle of what happened (or would have happened) to the sender."""
    if action.kind is ResolvedActionKind.BAN:
        return "banned"
    if action.kind is ResolvedActionKind.MUTE:
        if action.duration is not None:
            return f"muted for {format_duration(action.duration)}"
        return "muted"
    if action.kind is ResolvedActionKind.DELETE:
        return "deleted"
    if action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR:
        return "sent to moderators for review"
    return "allowed"


def build_audit_text(
    message: ModerationMessage,
    action: ResolvedAction,
    verdict: ModerationVerdict | None = None,
    has_moderator_chat: bool = True,
) -> str:
    """Describe an action taken (or proposed) on a flagged message."""
    reason = TRIGGER_DESCRIPTIONS[action.trigger]
    text = message.text or (verdict.message_text if verdict else "")

    if action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR and action.proposed is not None:
        headline = (
            f"{message.sender_name} sent a message and {reason}, would have been "
            f"{describe_action(action.proposed)} {TESTING_MODE_NOTE}"
        )
    elif action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR:
        headline = f"{message.sender_name} sent a message and {reason}, please review it"
    else:
        headline = f"{message.sender_name} sent a message and {reason}, was {describe_action(action)}"

    lines = [f"{headline}:", "", text or "[no text]"]
    if action.anonymous_downgrade:
        lines += ["", ANONYMOUS_SENDER_NOTE]
    if not has_moderator_chat:
        lines += ["", MODERATOR_CHAT_HINT]
    return "\n".join(lines)


def build_not_flagged_text(message: ModerationMessage, has_moderator_chat: bool = True) -> str:
    lines = [
        f"{message.sender_name} sent a message and it was NOT flagged {NOT_FLAGGED_NOTE}:",
        "",
        message.text or "[no text]",
    ]
    if not has_moderator_chat:
        lines += ["", MODERATOR_CHAT_HINT]
    return "\n".join(lines)


def build_deletion_notice(template: str, mention: str) -> str:
    return template.replace("{user}", mention)


def build_report_text(reporter: str, sender_name: str, message_text: str, has_moderator_chat: bool = True) -> str:
    lines = [f"{reporter} reported a message from {sender_name}:", "", message_text or "[no text]"]
    if not has_moderator_chat:
        lines += ["", MODERATOR_CHAT_HINT]
    return "\n".join(lines)


def build_failure_text(kind: ResolvedActionKind | ReviewOption, error: str) -> str:
    """Operator facing text for a failed action, e.g. ``Failed to ban user: ...``."""
    verbs = {
        ResolvedActionKind.BAN: "ban user",
        ResolvedActionKind.MUTE: "mute user",
        ResolvedActionKind.DELETE: "delete message",
        ResolvedActionKind.ROUTE_TO_MODERATOR: "notify moderators",
        ReviewOption.BAN: "ban user",
        ReviewOption.MUTE: "mute user",
        ReviewOption.DELETE: "delete message",
        ReviewOption.UNBAN: "unban user",
        ReviewOption.UNMUTE: "unmute user",
        ReviewOption.UNDELETE: "restore message",
    }
    return f"Failed to {verbs.get(kind, str(kind))}: {error}"


def review_options(action: ResolvedAction, has_reasoning: bool, is_sender_chat: bool = False) -> Tuple[ReviewOption, ...]:
    """Manual actions that make sense after ``action`` was taken or proposed."""
    if action.kind is ResolvedActionKind.BAN:
        options: Tuple[ReviewOption, ...] = (ReviewOption.UNBAN,)
    elif action.kind is ResolvedActionKind.MUTE:
        options = (ReviewOption.UNMUTE, ReviewOption.BAN)
    elif action.kind is ResolvedActionKind.DELETE:
        options = (ReviewOption.UNDELETE, ReviewOption.BAN)
    elif action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR:
        options = (ReviewOption.DELETE, ReviewOption.MUTE, ReviewOption.BAN)
    else:
        options = (ReviewOption.DELETE, ReviewOption.BAN)

    if is_sender_chat:
        options = tuple(option for option in options if option not in (ReviewOption.MUTE, ReviewOption.UNMUTE))
    if has_reasoning:
        options += (ReviewOption.SEE_REASON,)
    return options
