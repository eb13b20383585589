"""
Executes moderation decisions against the chat platform.

Rules the executor follows for every action:

- permissions are checked before any platform call; missing rights produce a
  PERMISSION_DENIED outcome with a readable explanation
- platform errors are reported to moderators with their transport prefix
  stripped and are never retried
- "already banned" style answers count as success, so repeating an action is
  harmless
- a ban also removes the user's recent messages recorded by the flood guard,
  in chunks the platform accepts; failures there are only logged

The manual primitives (delete, mute, unmute, ban, unban, undelete) are used
both by :meth:`EnforcementExecutor.execute`, by the moderator review
buttons and by the moderator commands.
"""

from __future__ import annotations

import asyncio
import datetime
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Sequence, Set

from modguard.database.moderation_log import ModerationLog, ModerationLogEntry
from modguard.database.scheduled_deletions import ScheduledDeletion, ScheduledDeletionStore
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID, MessageID
from modguard.datatypes.moderation_datatypes import (
    EnforcementOutcome,
    EnforcementStatus,
    EnforcementTarget,
    ModerationMessage,
    ModerationVerdict,
    ResolvedAction,
    ResolvedActionKind,
)
from modguard.datatypes.review_datatypes import ReviewRequest
from modguard.errors import PermissionDeniedError, PlatformError
from modguard.moderation import audit_messages
from modguard.moderation.flood_guard import FloodGuard
from modguard.platform.chat_platform import BotPermissions, ChatPlatform
from modguard.util.logger import get_logger

logger = get_logger("enforcement_executor")

# Lowercase fragments of platform errors meaning the action is already in effect
ALREADY_APPLIED_MARKERS = (
    "already banned",
    "already restricted",
    "already muted",
    "message to delete not found",
    "unknown message",
)

MISSING_DELETE_RIGHT = "I need the permission to delete messages in this chat to do that."
MISSING_RESTRICT_RIGHT = "I need the permission to restrict members in this chat to do that."
MISSING_BAN_RIGHT = "I need the permission to ban members in this chat to do that."

# Trigger recorded for actions moderators run by command
MANUAL_TRIGGER = "moderator"


def is_already_applied(error_text: str) -> bool:
    lowered = error_text.lower()
    return any(marker in lowered for marker in ALREADY_APPLIED_MARKERS)


def chunked(items: Sequence[MessageID], size: int) -> List[List[MessageID]]:
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


@dataclass(frozen=True, slots=True)
class EnforcementContext:
    """What the executor needs to know about the message being acted on."""

    message: ModerationMessage
    config: ChatModerationConfig
    verdict: ModerationVerdict | None = None

    @property
    def audit_chat(self) -> ChatID:
        return self.config.moderator_chat or self.message.chat_id

    @property
    def has_moderator_chat(self) -> bool:
        return self.config.moderator_chat is not None


class EnforcementExecutor:
    """
    Args:
        platform: Chat platform to act on.
        flood_guard: Source of the per-user message ledger used by ban cleanup.
        action_log: Optional log every enforcement attempt is written to.
        notice_ttl: Seconds the deletion notice stays in the chat.
        deletion_store: Optional store keeping scheduled notice removals
            across restarts.
        sleep: Coroutine used to wait before removing the notice, injectable for tests.
        clock: Returns the current UTC time, injectable for tests.
    """

    def __init__(
        self,
        platform: ChatPlatform,
        flood_guard: FloodGuard,
        action_log: ModerationLog | None = None,
        notice_ttl: float = 60.0,
        deletion_store: ScheduledDeletionStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime.datetime] = lambda: datetime.datetime.now(datetime.timezone.utc),
    ) -> None:
        self.platform = platform
        self.flood_guard = flood_guard
        self.action_log = action_log
        self.notice_ttl = notice_ttl
        self.deletion_store = deletion_store
        self._sleep = sleep
        self._clock = clock
        self._pending_removals: Set[asyncio.Task] = set()

    # ========== Helpers ==========

    async def _check_permission(
        self, chat_id: ChatID, has_right: Callable[[BotPermissions], bool], missing_message: str
    ) -> EnforcementOutcome | None:
        """Return a failure outcome when the bot lacks a right, None when it may proceed."""
        try:
            permissions = await self.platform.get_bot_permissions(chat_id)
        except PlatformError as exc:
            logger.warning("[ENFORCEMENT] Could not read bot permissions in %s: %s", chat_id, exc.text)
            return EnforcementOutcome(EnforcementStatus.PLATFORM_ERROR, exc.text)

        if not has_right(permissions):
            logger.info("[ENFORCEMENT] Missing permission in %s: %s", chat_id, missing_message)
            return EnforcementOutcome(EnforcementStatus.PERMISSION_DENIED, missing_message)
        return None

    async def _attempt(self, description: str, call: Awaitable[None]) -> EnforcementOutcome:
        """Await one platform call and translate its failure into an outcome."""
        try:
            await call
        except PermissionDeniedError as exc:
            logger.warning("[ENFORCEMENT] %s denied: %s", description, exc.text)
            return EnforcementOutcome(EnforcementStatus.PERMISSION_DENIED, exc.text)
        except PlatformError as exc:
            if is_already_applied(exc.text):
                logger.info("[ENFORCEMENT] %s already applied: %s", description, exc.text)
                return EnforcementOutcome(EnforcementStatus.ALREADY_APPLIED, exc.text)
            logger.warning("[ENFORCEMENT] %s failed: %s", description, exc.text)
            return EnforcementOutcome(EnforcementStatus.PLATFORM_ERROR, exc.text)
        return EnforcementOutcome.success()

    async def _delete_quietly(self, chat_id: ChatID, message_id: MessageID | None) -> None:
        """Delete the offending message ahead of a mute or ban; failures do not stop the action."""
        if message_id is None:
            return
        outcome = await self._attempt(
            f"Deleting message {message_id} in {chat_id}", self.platform.delete_message(chat_id, message_id)
        )
        if not outcome.succeeded:
            logger.info("[ENFORCEMENT] Continuing without deleting message %s: %s", message_id, outcome.message)

    async def delete_recent_messages(self, chat_id: ChatID, target: EnforcementTarget, skip: MessageID | None = None) -> int:
        """Batch delete the messages recorded for a user. Returns how many were deleted."""
        message_ids = [
            message_id
            for message_id in self.flood_guard.get_user_message_ids(chat_id, target.user_id)
            if message_id != skip
        ]
        deleted = 0
        for chunk in chunked(message_ids, self.platform.max_batch_delete):
            try:
                await self.platform.delete_messages(chat_id, chunk)
                deleted += len(chunk)
            except PlatformError as exc:
                logger.warning(
                    "[ENFORCEMENT] Failed to delete %d messages of %s in %s: %s",
                    len(chunk), target.user_id, chat_id, exc.text,
                )
        if message_ids:
            logger.info("[ENFORCEMENT] Removed %d/%d recent messages of %s in %s", deleted, len(message_ids), target.user_id, chat_id)
        return deleted

    # ========== Manual primitives ==========

    async def delete(self, chat_id: ChatID, message_id: MessageID) -> EnforcementOutcome:
        denied = await self._check_permission(chat_id, lambda p: p.can_delete_messages, MISSING_DELETE_RIGHT)
        if denied:
            return denied
        return await self._attempt(
            f"Deleting message {message_id} in {chat_id}", self.platform.delete_message(chat_id, message_id)
        )

    async def mute(
        self,
        chat_id: ChatID,
        target: EnforcementTarget,
        duration: datetime.timedelta | None = None,
        message_id: MessageID | None = None,
    ) -> EnforcementOutcome:
        """Restrict a member, for ``duration`` or indefinitely, removing ``message_id`` first."""
        if target.is_sender_chat:
            return EnforcementOutcome(
                EnforcementStatus.PLATFORM_ERROR, "Messages sent on behalf of a channel cannot be muted"
            )
        denied = await self._check_permission(chat_id, lambda p: p.can_restrict_members, MISSING_RESTRICT_RIGHT)
        if denied:
            return denied

        await self._delete_quietly(chat_id, message_id)
        until = self._clock() + duration if duration is not None else None
        return await self._attempt(
            f"Muting {target.user_id} in {chat_id}", self.platform.restrict_member(chat_id, target.user_id, until)
        )

    async def unmute(self, chat_id: ChatID, target: EnforcementTarget) -> EnforcementOutcome:
        denied = await self._check_permission(chat_id, lambda p: p.can_restrict_members, MISSING_RESTRICT_RIGHT)
        if denied:
            return denied
        return await self._attempt(
            f"Unmuting {target.user_id} in {chat_id}", self.platform.unrestrict_member(chat_id, target.user_id)
        )

    async def ban(
        self, chat_id: ChatID, target: EnforcementTarget, message_id: MessageID | None = None
    ) -> EnforcementOutcome:
        """Ban the user or sender chat, then purge the user's recorded messages."""
        denied = await self._check_permission(chat_id, lambda p: p.can_ban_members, MISSING_BAN_RIGHT)
        if denied:
            return denied

        await self._delete_quietly(chat_id, message_id)
        if target.sender_chat_id is not None:
            return await self._attempt(
                f"Banning sender chat {target.sender_chat_id} in {chat_id}",
                self.platform.ban_sender_chat(chat_id, target.sender_chat_id),
            )

        outcome = await self._attempt(
            f"Banning {target.user_id} in {chat_id}", self.platform.ban_member(chat_id, target.user_id)
        )
        if outcome.status is EnforcementStatus.SUCCESS:
            deleted = await self.delete_recent_messages(chat_id, target, skip=message_id)
            outcome = EnforcementOutcome.success(deleted_count=deleted)
        return outcome

    async def unban(self, chat_id: ChatID, target: EnforcementTarget) -> EnforcementOutcome:
        denied = await self._check_permission(chat_id, lambda p: p.can_ban_members, MISSING_BAN_RIGHT)
        if denied:
            return denied
        if target.sender_chat_id is not None:
            call = self.platform.unban_sender_chat(chat_id, target.sender_chat_id)
        else:
            call = self.platform.unban_member(chat_id, target.user_id)
        return await self._attempt(f"Unbanning {target.sender_chat_id or target.user_id} in {chat_id}", call)

    async def undelete(self, review: ReviewRequest) -> EnforcementOutcome:
        """Re-post a removed message into its chat, attributed to the sender."""
        text = f"{review.sender_name} wrote:\n\n{review.message_text}"
        return await self._attempt(
            f"Restoring message {review.message_id} in {review.chat_id}",
            self.platform.send_message(review.chat_id, text),
        )

    # ========== Automatic enforcement ==========

    async def execute(
        self,
        action: ResolvedAction,
        chat_id: ChatID,
        target: EnforcementTarget,
        context: EnforcementContext,
    ) -> EnforcementOutcome:
        """
        Carry out a resolved action for a message and produce the audit trail.

        Args:
            action: Action computed by the policy resolver.
            chat_id: Chat the message was posted in.
            target: User or sender chat the action applies to.
            context: Message, config snapshot and verdict behind the action.

        Returns:
            EnforcementOutcome: Never raises for platform failures.
        """
        message_id = context.message.message_id

        if action.kind is ResolvedActionKind.ALLOW:
            if context.config.debug_mode and context.verdict is not None:
                await self._send(
                    context.audit_chat,
                    audit_messages.build_not_flagged_text(context.message, context.has_moderator_chat),
                    self._review_request(context, action, target),
                )
            return EnforcementOutcome.success()

        if action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR:
            outcome = await self._post_audit(context, action, target)
        elif action.kind is ResolvedActionKind.DELETE:
            outcome = await self.delete(chat_id, message_id)
        elif action.kind is ResolvedActionKind.MUTE:
            outcome = await self.mute(chat_id, target, action.duration, message_id)
        elif action.kind is ResolvedActionKind.BAN:
            outcome = await self.ban(chat_id, target, message_id)
        else:
            outcome = EnforcementOutcome(EnforcementStatus.SKIPPED, f"Unsupported action {action.kind}")

        if action.kind is not ResolvedActionKind.ROUTE_TO_MODERATOR:
            if outcome.succeeded:
                await self._post_audit(context, action, target)
                if action.send_notice:
                    await self._post_notice(chat_id, context, target)
            else:
                await self._send(context.audit_chat, audit_messages.build_failure_text(action.kind, outcome.message))

        logger.info(
            "[ENFORCEMENT] %s (%s) on %s in %s: %s",
            action.kind, action.trigger, target.user_id, chat_id, outcome.status,
        )
        await self._record(action, chat_id, target, context, outcome)
        return outcome

    # ========== Audit trail ==========

    def _review_request(
        self, context: EnforcementContext, action: ResolvedAction, target: EnforcementTarget
    ) -> ReviewRequest:
        reasoning = context.verdict.reasoning if context.verdict else None
        return ReviewRequest(
            chat_id=context.message.chat_id,
            message_id=context.message.message_id,
            user_id=target.user_id,
            sender_name=target.mention,
            message_text=context.message.text,
            reasoning=reasoning,
            options=audit_messages.review_options(action, reasoning is not None, target.is_sender_chat),
            sender_chat_id=target.sender_chat_id,
        )

    async def _send(self, chat_id: ChatID, text: str, review: ReviewRequest | None = None) -> MessageID | None:
        try:
            return await self.platform.send_message(chat_id, text, review)
        except PlatformError as exc:
            logger.warning("[ENFORCEMENT] Could not post to %s: %s", chat_id, exc.text)
            return None

    async def _post_audit(
        self, context: EnforcementContext, action: ResolvedAction, target: EnforcementTarget
    ) -> EnforcementOutcome:
        text = audit_messages.build_audit_text(context.message, action, context.verdict, context.has_moderator_chat)
        try:
            await self.platform.send_message(context.audit_chat, text, self._review_request(context, action, target))
        except PlatformError as exc:
            logger.warning("[ENFORCEMENT] Could not post audit to %s: %s", context.audit_chat, exc.text)
            return EnforcementOutcome(EnforcementStatus.PLATFORM_ERROR, exc.text)
        return EnforcementOutcome.success()

    async def _post_notice(self, chat_id: ChatID, context: EnforcementContext, target: EnforcementTarget) -> None:
        text = audit_messages.build_deletion_notice(context.config.deletion_message, target.mention)
        notice_id = await self._send(chat_id, text)
        if notice_id is None:
            return
        await self._schedule_removal(chat_id, notice_id, self.notice_ttl)

    async def _schedule_removal(self, chat_id: ChatID, message_id: MessageID, delay: float) -> None:
        """Remove a bot message after ``delay`` seconds, persisting the plan when a store is set."""
        if self.deletion_store is not None:
            deletion = ScheduledDeletion(chat_id, message_id, self._clock() + datetime.timedelta(seconds=delay))
            try:
                await self.deletion_store.schedule(deletion)
            except Exception:
                logger.exception("[ENFORCEMENT] Failed to persist removal of message %s in %s", message_id, chat_id)
        self._start_removal(chat_id, message_id, delay)

    def _start_removal(self, chat_id: ChatID, message_id: MessageID, delay: float) -> None:
        task = asyncio.create_task(self._remove_later(chat_id, message_id, delay))
        self._pending_removals.add(task)
        task.add_done_callback(self._pending_removals.discard)

    async def _remove_later(self, chat_id: ChatID, message_id: MessageID, delay: float) -> None:
        await self._sleep(delay)
        try:
            await self.platform.delete_message(chat_id, message_id)
        except PlatformError as exc:
            logger.debug("[ENFORCEMENT] Could not remove message %s in %s: %s", message_id, chat_id, exc.text)

        if self.deletion_store is None:
            return
        try:
            await self.deletion_store.remove(chat_id, message_id)
        except Exception:
            logger.exception("[ENFORCEMENT] Failed to clear scheduled removal of message %s in %s", message_id, chat_id)

    async def resume_scheduled_deletions(self) -> int:
        """
        Restart the removal of bot messages scheduled before a restart.

        Overdue messages are removed right away.

        Returns:
            int: Number of removals resumed.
        """
        if self.deletion_store is None:
            return 0
        pending = await self.deletion_store.pending()
        now = self._clock()
        for deletion in pending:
            delay = max(0.0, (deletion.delete_at - now).total_seconds())
            self._start_removal(deletion.chat_id, deletion.message_id, delay)
        if pending:
            logger.info("[ENFORCEMENT] Resumed %d scheduled message removals", len(pending))
        return len(pending)

    # ========== Action log ==========

    async def _write_log(self, entry: ModerationLogEntry) -> None:
        if self.action_log is None:
            return
        try:
            await self.action_log.record(entry)
        except Exception:
            logger.exception("[ENFORCEMENT] Failed to record %s in the moderation log", entry.action)

    async def _record(
        self,
        action: ResolvedAction,
        chat_id: ChatID,
        target: EnforcementTarget,
        context: EnforcementContext,
        outcome: EnforcementOutcome,
    ) -> None:
        reason = context.verdict.reasoning if context.verdict and context.verdict.reasoning else outcome.message or None
        await self._write_log(
            ModerationLogEntry(
                chat_id=chat_id,
                user_id=target.user_id,
                message_id=context.message.message_id,
                action=str(action.kind),
                trigger=str(action.trigger),
                status=str(outcome.status),
                reason=reason,
            )
        )

    async def record_manual(
        self,
        action: str,
        chat_id: ChatID,
        target: EnforcementTarget,
        message_id: MessageID | None,
        outcome: EnforcementOutcome,
        moderator: str,
    ) -> None:
        """Log an action a moderator took by command."""
        await self._write_log(
            ModerationLogEntry(
                chat_id=chat_id,
                user_id=target.user_id,
                message_id=message_id,
                action=action,
                trigger=MANUAL_TRIGGER,
                status=str(outcome.status),
                reason=outcome.message or f"by {moderator}",
            )
        )

    async def shutdown(self) -> None:
        """Cancel removals still waiting; persisted ones resume on the next start."""
        pending = list(self._pending_removals)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
