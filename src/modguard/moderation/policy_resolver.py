"""
Turns the moderation signals of one message into a single action.

Precedence, highest first:

1. word blocklist match: fixed one hour mute, never downgraded by debug mode
2. flood guard flag: fixed mute
3. mostly-emoji message: delete
4. classifier verdict, looked up in the chat's judgement table (Good is always allowed)

Afterwards anonymous senders get the action they can actually receive, debug
mode turns automatic enforcement into a moderator review, and silent mode
switches off the deletion notice. Everything here is pure.
"""

from __future__ import annotations

import datetime
from dataclasses import replace

from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.moderation_datatypes import (
    ActionTrigger,
    ModerationAction,
    ModerationJudgement,
    ModerationMessage,
    ModerationVerdict,
    ResolvedAction,
    ResolvedActionKind,
)
from modguard.moderation.content_checks import find_blocklisted_word, is_mostly_emoji

BLOCKLIST_MUTE_DURATION = datetime.timedelta(hours=1)
FLOOD_MUTE_DURATION = datetime.timedelta(minutes=15)
TEMP_MUTE_DURATION = datetime.timedelta(minutes=15)

ENFORCING_KINDS = frozenset({ResolvedActionKind.DELETE, ResolvedActionKind.MUTE, ResolvedActionKind.BAN})


def action_from_judgement(action: ModerationAction) -> ResolvedAction:
    """Map a configured judgement action onto a resolved action."""
    trigger = ActionTrigger.CLASSIFICATION
    if action is ModerationAction.BAN:
        return ResolvedAction(ResolvedActionKind.BAN, trigger)
    if action is ModerationAction.MUTE:
        return ResolvedAction(ResolvedActionKind.MUTE, trigger)
    if action is ModerationAction.TEMP_MUTE:
        return ResolvedAction(ResolvedActionKind.MUTE, trigger, TEMP_MUTE_DURATION)
    if action is ModerationAction.DELETE:
        return ResolvedAction(ResolvedActionKind.DELETE, trigger)
    if action is ModerationAction.WARN_MODS:
        return ResolvedAction(ResolvedActionKind.ROUTE_TO_MODERATOR, trigger)
    return ResolvedAction.allow(trigger)


def downgrade_for_anonymous_sender(action: ResolvedAction) -> ResolvedAction:
    """
    Messages posted on behalf of a channel cannot be muted.

    An indefinite mute becomes a ban of the sender chat, a time bounded mute
    becomes a plain delete.
    """
    if action.kind is not ResolvedActionKind.MUTE:
        return action
    if action.duration is None:
        return replace(action, kind=ResolvedActionKind.BAN, anonymous_downgrade=True)
    return replace(action, kind=ResolvedActionKind.DELETE, duration=None, anonymous_downgrade=True)


def _finalize(
    action: ResolvedAction,
    config: ChatModerationConfig,
    message: ModerationMessage,
    honour_debug_mode: bool = True,
) -> ResolvedAction:
    if message.is_anonymous_sender:
        action = downgrade_for_anonymous_sender(action)

    if honour_debug_mode and config.debug_mode and action.kind in ENFORCING_KINDS:
        return ResolvedAction(
            ResolvedActionKind.ROUTE_TO_MODERATOR,
            action.trigger,
            proposed=action,
            anonymous_downgrade=action.anonymous_downgrade,
        )

    if action.kind in ENFORCING_KINDS and not config.silent:
        action = replace(action, send_notice=True)
    return action


def resolve(
    verdict: ModerationVerdict | None,
    is_flood: bool,
    config: ChatModerationConfig,
    message_context: ModerationMessage,
) -> ResolvedAction:
    """
    Compute the action for one message.

    Args:
        verdict: Classifier verdict, or None when the message was not (or not yet) classified.
        is_flood: Flood guard result for the message.
        config: Snapshot of the chat's moderation config.
        message_context: The message being moderated.

    Returns:
        ResolvedAction: The action to execute.
    """
    if find_blocklisted_word(message_context.text, config.word_blocklist) is not None:
        action = ResolvedAction(ResolvedActionKind.MUTE, ActionTrigger.WORD_BLOCKLIST, BLOCKLIST_MUTE_DURATION)
        return _finalize(action, config, message_context, honour_debug_mode=False)

    if is_flood and config.mute_flood:
        action = ResolvedAction(ResolvedActionKind.MUTE, ActionTrigger.FLOOD, FLOOD_MUTE_DURATION)
        return _finalize(action, config, message_context)

    if config.block_mostly_emoji_messages and is_mostly_emoji(message_context.text):
        return _finalize(ResolvedAction(ResolvedActionKind.DELETE, ActionTrigger.MOSTLY_EMOJI), config, message_context)

    if verdict is None or verdict.judgement is ModerationJudgement.GOOD:
        return ResolvedAction.allow()

    return _finalize(action_from_judgement(config.action_for(verdict.judgement)), config, message_context)
