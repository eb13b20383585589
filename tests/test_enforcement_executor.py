"""Tests for the enforcement executor against an in-memory platform."""

import asyncio
import datetime

import pytest

from conftest import no_sleep
from modguard.database.scheduled_deletions import InMemoryScheduledDeletions, ScheduledDeletion
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.moderation_datatypes import (
    ActionTrigger,
    EnforcementStatus,
    EnforcementTarget,
    ModerationJudgement,
    ModerationVerdict,
    ResolvedAction,
    ResolvedActionKind,
)
from modguard.datatypes.review_datatypes import ReviewOption, ReviewRequest
from modguard.errors import PermissionDeniedError, PlatformError
from modguard.moderation.enforcement_executor import (
    MANUAL_TRIGGER,
    MISSING_BAN_RIGHT,
    EnforcementContext,
    EnforcementExecutor,
    chunked,
)
from modguard.moderation.flood_guard import FloodGuard
from modguard.platform.chat_platform import BotPermissions

CHAT = ChatID(-100)
MOD_CHAT = ChatID(-999)
USER = UserID(42)
TARGET = EnforcementTarget(USER, "@user42")
NOW = datetime.datetime(2025, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


class RecordingLog:
    def __init__(self):
        self.entries = []

    async def record(self, entry):
        self.entries.append(entry)


def _executor(platform, flood_guard=None, **kwargs):
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("clock", lambda: NOW)
    return EnforcementExecutor(platform, flood_guard or FloodGuard(), **kwargs)


def _fill_ledger(guard: FloodGuard, count: int, start: int = 1) -> None:
    for message_id in range(start, start + count):
        guard.check(CHAT, USER, f"message {message_id}", MessageID(message_id))


def test_chunked_splits_into_platform_batches():
    ids = [MessageID(i) for i in range(250)]

    assert [len(chunk) for chunk in chunked(ids, 100)] == [100, 100, 50]


class TestPermissions:
    @pytest.mark.asyncio
    async def test_missing_ban_right_makes_no_platform_call(self, platform):
        platform.permissions = BotPermissions(can_delete_messages=True, can_restrict_members=True, can_ban_members=False)

        outcome = await _executor(platform).ban(CHAT, TARGET, MessageID(7))

        assert outcome.status is EnforcementStatus.PERMISSION_DENIED
        assert outcome.message == MISSING_BAN_RIGHT
        assert platform.enforcement_calls == []

    @pytest.mark.asyncio
    async def test_missing_delete_right(self, platform):
        platform.permissions = BotPermissions(False, True, True)

        outcome = await _executor(platform).delete(CHAT, MessageID(7))

        assert outcome.status is EnforcementStatus.PERMISSION_DENIED
        assert platform.enforcement_calls == []

    @pytest.mark.asyncio
    async def test_platform_permission_error_is_reported(self, platform):
        platform.errors["restrict_member"] = PermissionDeniedError("Forbidden: not enough rights to restrict")

        outcome = await _executor(platform).mute(CHAT, TARGET)

        assert outcome.status is EnforcementStatus.PERMISSION_DENIED
        assert outcome.message == "not enough rights to restrict"


class TestBan:
    @pytest.mark.asyncio
    async def test_ban_is_idempotent(self, platform):
        executor = _executor(platform)

        first = await executor.ban(CHAT, TARGET)
        second = await executor.ban(CHAT, TARGET)

        assert first.status is EnforcementStatus.SUCCESS
        assert second.status is EnforcementStatus.ALREADY_APPLIED
        assert second.succeeded

    @pytest.mark.asyncio
    async def test_ban_removes_recorded_messages_in_chunks(self, platform):
        guard = FloodGuard()
        _fill_ledger(guard, 250)

        outcome = await _executor(platform, guard).ban(CHAT, TARGET)

        batches = platform.calls_named("delete_messages")
        assert [len(call[2]) for call in batches] == [100, 100, 50]
        assert outcome.deleted_count == 250

    @pytest.mark.asyncio
    async def test_offending_message_is_deleted_once(self, platform):
        guard = FloodGuard()
        _fill_ledger(guard, 3)

        await _executor(platform, guard).ban(CHAT, TARGET, MessageID(3))

        assert platform.calls_named("delete_message") == [("delete_message", CHAT, MessageID(3))]
        assert platform.calls_named("delete_messages") == [("delete_messages", CHAT, [MessageID(1), MessageID(2)])]

    @pytest.mark.asyncio
    async def test_failed_cleanup_chunk_does_not_fail_the_ban(self, platform):
        guard = FloodGuard()
        _fill_ledger(guard, 5)
        platform.errors["delete_messages"] = PlatformError("Bad Request: messages too old")

        outcome = await _executor(platform, guard).ban(CHAT, TARGET)

        assert outcome.status is EnforcementStatus.SUCCESS
        assert outcome.deleted_count == 0

    @pytest.mark.asyncio
    async def test_sender_chat_ban(self, platform):
        guard = FloodGuard()
        _fill_ledger(guard, 3)
        target = EnforcementTarget(USER, "Spam Channel", sender_chat_id=ChatID(-555))

        outcome = await _executor(platform, guard).ban(CHAT, target)

        assert outcome.succeeded
        assert platform.calls_named("ban_sender_chat") == [("ban_sender_chat", CHAT, ChatID(-555))]
        assert platform.calls_named("ban_member") == []
        assert platform.calls_named("delete_messages") == []


class TestManualPrimitives:
    @pytest.mark.asyncio
    async def test_timed_mute_passes_deadline(self, platform):
        await _executor(platform).mute(CHAT, TARGET, datetime.timedelta(minutes=15), MessageID(3))

        assert platform.calls_named("delete_message") == [("delete_message", CHAT, MessageID(3))]
        assert platform.calls_named("restrict_member") == [
            ("restrict_member", CHAT, USER, NOW + datetime.timedelta(minutes=15))
        ]

    @pytest.mark.asyncio
    async def test_sender_chat_cannot_be_muted(self, platform):
        target = EnforcementTarget(USER, "Spam Channel", sender_chat_id=ChatID(-555))

        outcome = await _executor(platform).mute(CHAT, target)

        assert not outcome.succeeded
        assert platform.enforcement_calls == []

    @pytest.mark.asyncio
    async def test_missing_message_counts_as_deleted(self, platform):
        platform.errors["delete_message"] = PlatformError("Bad Request: message to delete not found")

        outcome = await _executor(platform).delete(CHAT, MessageID(3))

        assert outcome.status is EnforcementStatus.ALREADY_APPLIED

    @pytest.mark.asyncio
    async def test_undelete_reposts_attributed_text(self, platform):
        review = ReviewRequest(CHAT, MessageID(3), USER, "@user42", "original text")

        outcome = await _executor(platform).undelete(review)

        assert outcome.succeeded
        assert platform.sent == [(CHAT, "@user42 wrote:\n\noriginal text", None)]

    @pytest.mark.asyncio
    async def test_unban_sender_chat(self, platform):
        target = EnforcementTarget(USER, "Spam Channel", sender_chat_id=ChatID(-555))

        await _executor(platform).unban(CHAT, target)

        assert platform.calls_named("unban_sender_chat") == [("unban_sender_chat", CHAT, ChatID(-555))]


class TestExecute:
    def _context(self, make_message, config=None, verdict=None, text="buy followers"):
        config = config or ChatModerationConfig(debug_mode=False)
        return EnforcementContext(make_message(text), config, verdict)

    @pytest.mark.asyncio
    async def test_delete_posts_audit_and_notice(self, platform, make_message):
        executor = _executor(platform)
        context = self._context(make_message)
        action = ResolvedAction(ResolvedActionKind.DELETE, ActionTrigger.CLASSIFICATION, send_notice=True)

        outcome = await executor.execute(action, CHAT, TARGET, context)
        await executor.shutdown()

        assert outcome.succeeded
        texts = [text for _, text, _ in platform.sent]
        assert "was deleted" in texts[0]
        assert texts[1].startswith("@user42, your message was removed")
        audit_review = platform.sent[0][2]
        assert audit_review.options[0] is ReviewOption.UNDELETE

    @pytest.mark.asyncio
    async def test_notice_is_removed_after_ttl(self, platform, make_message):
        executor = _executor(platform, notice_ttl=5)
        action = ResolvedAction(ResolvedActionKind.DELETE, ActionTrigger.CLASSIFICATION, send_notice=True)

        await executor.execute(action, CHAT, TARGET, self._context(make_message))
        for _ in range(3):
            await asyncio.sleep(0)

        deleted = [call[2] for call in platform.calls_named("delete_message")]
        assert len(deleted) == 2  # the offending message and the notice
        assert deleted[1].to_int() >= 90_000

    @pytest.mark.asyncio
    async def test_no_notice_without_send_notice(self, platform, make_message):
        action = ResolvedAction(ResolvedActionKind.DELETE, ActionTrigger.CLASSIFICATION, send_notice=False)

        await _executor(platform).execute(action, CHAT, TARGET, self._context(make_message))

        assert len(platform.sent) == 1

    @pytest.mark.asyncio
    async def test_route_posts_to_moderator_chat_only(self, platform, make_message):
        config = ChatModerationConfig(debug_mode=True, moderator_chat=MOD_CHAT)
        verdict = ModerationVerdict(ModerationJudgement.HARMFUL, "spam", "buy followers")
        proposed = ResolvedAction(ResolvedActionKind.BAN, ActionTrigger.CLASSIFICATION)
        action = ResolvedAction(ResolvedActionKind.ROUTE_TO_MODERATOR, ActionTrigger.CLASSIFICATION, proposed=proposed)

        outcome = await _executor(platform).execute(action, CHAT, TARGET, self._context(make_message, config, verdict))

        assert outcome.succeeded
        assert platform.enforcement_calls == []
        chat_id, text, review = platform.sent[0]
        assert chat_id == MOD_CHAT
        assert "would have been banned" in text
        assert ReviewOption.SEE_REASON in review.options

    @pytest.mark.asyncio
    async def test_failure_is_reported_with_clean_text(self, platform, make_message):
        platform.errors["ban_member"] = PlatformError("Bad Request: CHAT_ADMIN_REQUIRED")
        config = ChatModerationConfig(debug_mode=False, moderator_chat=MOD_CHAT)
        action = ResolvedAction(ResolvedActionKind.BAN, ActionTrigger.CLASSIFICATION, send_notice=True)

        outcome = await _executor(platform).execute(action, CHAT, TARGET, self._context(make_message, config))

        assert outcome.status is EnforcementStatus.PLATFORM_ERROR
        assert platform.sent == [(MOD_CHAT, "Failed to ban user: CHAT_ADMIN_REQUIRED", None)]

    @pytest.mark.asyncio
    async def test_allow_in_debug_mode_reports_not_flagged(self, platform, make_message):
        config = ChatModerationConfig(debug_mode=True)
        verdict = ModerationVerdict(ModerationJudgement.GOOD, "fine", "hello")

        await _executor(platform).execute(ResolvedAction.allow(), CHAT, TARGET, self._context(make_message, config, verdict))

        assert len(platform.sent) == 1
        assert "NOT flagged" in platform.sent[0][1]

    @pytest.mark.asyncio
    async def test_allow_is_silent_outside_debug_mode(self, platform, make_message):
        verdict = ModerationVerdict(ModerationJudgement.GOOD, "fine", "hello")

        await _executor(platform).execute(ResolvedAction.allow(), CHAT, TARGET, self._context(make_message, verdict=verdict))

        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_attempts_are_recorded(self, platform, make_message):
        log = RecordingLog()
        action = ResolvedAction(ResolvedActionKind.MUTE, ActionTrigger.FLOOD, datetime.timedelta(minutes=15))

        await _executor(platform, action_log=log).execute(action, CHAT, TARGET, self._context(make_message))

        entry = log.entries[0]
        assert (entry.action, entry.trigger, entry.status) == ("mute", "flood", "success")


class TestScheduledRemovals:
    @staticmethod
    async def _settle():
        for _ in range(5):
            await asyncio.sleep(0)

    @staticmethod
    def _notice_action():
        return ResolvedAction(ResolvedActionKind.DELETE, ActionTrigger.CLASSIFICATION, send_notice=True)

    @pytest.mark.asyncio
    async def test_notice_removal_is_persisted_until_done(self, platform, make_message):
        store = InMemoryScheduledDeletions()
        gate = asyncio.Event()

        async def wait_for_gate(_seconds):
            await gate.wait()

        executor = _executor(platform, notice_ttl=60, deletion_store=store, sleep=wait_for_gate)
        context = EnforcementContext(make_message("spam"), ChatModerationConfig(debug_mode=False))

        await executor.execute(self._notice_action(), CHAT, TARGET, context)
        await self._settle()

        scheduled = await store.pending()
        assert len(scheduled) == 1
        assert scheduled[0].chat_id == CHAT
        assert scheduled[0].delete_at == NOW + datetime.timedelta(seconds=60)

        gate.set()
        await self._settle()

        assert await store.pending() == []
        assert ("delete_message", CHAT, scheduled[0].message_id) in platform.calls

    @pytest.mark.asyncio
    async def test_shutdown_keeps_unfinished_removals(self, platform, make_message):
        store = InMemoryScheduledDeletions()

        async def never(_seconds):
            await asyncio.Event().wait()

        executor = _executor(platform, deletion_store=store, sleep=never)
        context = EnforcementContext(make_message("spam"), ChatModerationConfig(debug_mode=False))

        await executor.execute(self._notice_action(), CHAT, TARGET, context)
        await executor.shutdown()

        assert len(await store.pending()) == 1

    @pytest.mark.asyncio
    async def test_resume_removes_overdue_and_waits_for_the_rest(self, platform):
        store = InMemoryScheduledDeletions()
        await store.schedule(ScheduledDeletion(CHAT, MessageID(1), NOW - datetime.timedelta(seconds=10)))
        await store.schedule(ScheduledDeletion(CHAT, MessageID(2), NOW + datetime.timedelta(seconds=30)))
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        executor = _executor(platform, deletion_store=store, sleep=record_sleep)

        resumed = await executor.resume_scheduled_deletions()
        await self._settle()

        assert resumed == 2
        assert sorted(delays) == [0.0, 30.0]
        assert platform.calls_named("delete_message") == [
            ("delete_message", CHAT, MessageID(1)),
            ("delete_message", CHAT, MessageID(2)),
        ]
        assert await store.pending() == []

    @pytest.mark.asyncio
    async def test_resume_without_store_does_nothing(self, platform):
        assert await _executor(platform).resume_scheduled_deletions() == 0

    @pytest.mark.asyncio
    async def test_store_failure_does_not_stop_the_removal(self, platform, make_message):
        class BrokenStore:
            async def schedule(self, deletion):
                raise RuntimeError("database is gone")

            async def remove(self, chat_id, message_id):
                raise RuntimeError("database is gone")

            async def pending(self):
                return []

        executor = _executor(platform, notice_ttl=5, deletion_store=BrokenStore())
        context = EnforcementContext(make_message("spam"), ChatModerationConfig(debug_mode=False))

        await executor.execute(self._notice_action(), CHAT, TARGET, context)
        await self._settle()

        assert len(platform.calls_named("delete_message")) == 2


class TestManualRecords:
    @pytest.mark.asyncio
    async def test_manual_action_names_the_moderator(self, platform):
        log = RecordingLog()
        executor = _executor(platform, action_log=log)

        outcome = await executor.ban(CHAT, TARGET)
        await executor.record_manual("ban", CHAT, TARGET, None, outcome, "alice")

        entry = log.entries[0]
        assert (entry.action, entry.trigger, entry.status) == ("ban", MANUAL_TRIGGER, "success")
        assert entry.reason == "by alice"
        assert entry.message_id is None
