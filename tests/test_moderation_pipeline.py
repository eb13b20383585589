"""End to end tests of the per-message moderation flow."""

import datetime

import pytest

from conftest import FakeJudgementClient, completed, no_sleep
from modguard.ai.classification_engine import ClassificationEngine
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.moderation_datatypes import (
    ActionTrigger,
    MessageKind,
    ModerationImage,
    ModerationJudgement,
    ResolvedActionKind,
)
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.moderation.flood_guard import FloodGuard
from modguard.moderation.moderation_pipeline import ModerationPipeline
from modguard.moderation.scrutiny import ScrutinyDecision
from modguard.settings.chat_config_store import InMemoryChatConfigStore

CHAT = ChatID(-100)
USER = UserID(42)
NOW = datetime.datetime(2025, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

LIVE = ChatModerationConfig(debug_mode=False)
PHOTO = ModerationImage(url="https://cdn.example/photo.jpg", mime_type="image/jpeg")


def _pipeline(platform, client, clock, config=LIVE, default_config=None):
    flood_guard = FloodGuard(clock=clock)
    engine = ClassificationEngine(client, title_source=platform, sleep=no_sleep)
    executor = EnforcementExecutor(platform, flood_guard, sleep=no_sleep, clock=lambda: NOW)
    configs = {CHAT: config} if config is not None else {}
    return ModerationPipeline(flood_guard, engine, executor, InMemoryChatConfigStore(configs), default_config)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_repeated_message_is_muted_as_flood_before_classification(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        results = []
        for _ in range(3):
            results.append(await pipeline.handle_message(make_message("buy cheap followers")))
            clock.advance(5)
        await pipeline.shutdown()

        assert [result.is_flood for result in results] == [False, False, True]
        flood = results[2]
        assert flood.verdict is None
        assert flood.action.kind is ResolvedActionKind.MUTE
        assert flood.action.trigger is ActionTrigger.FLOOD
        assert len(client.submitted) == 2
        assert platform.calls_named("restrict_member") == [
            ("restrict_member", CHAT, USER, NOW + datetime.timedelta(minutes=15))
        ]

    @pytest.mark.asyncio
    async def test_harmful_message_bans_and_clears_recent_messages(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good"), completed("Good"), completed("Harmful", "scam link")])
        pipeline = _pipeline(platform, client, clock)

        await pipeline.handle_message(make_message("hi all"))
        await pipeline.handle_message(make_message("anyone here?"))
        result = await pipeline.handle_message(make_message("free crypto at scam.example"))
        await pipeline.shutdown()

        assert result.verdict.judgement is ModerationJudgement.HARMFUL
        assert result.action.kind is ResolvedActionKind.BAN
        assert result.outcome.succeeded
        assert platform.calls_named("ban_member") == [("ban_member", CHAT, USER)]
        assert platform.calls_named("delete_messages") == [("delete_messages", CHAT, [MessageID(1), MessageID(2)])]
        assert ("delete_message", CHAT, MessageID(3)) in platform.calls


class TestGates:
    @pytest.mark.asyncio
    async def test_unconfigured_chat_is_ignored(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Harmful")])
        pipeline = _pipeline(platform, client, clock, config=None)

        result = await pipeline.handle_message(make_message("spam"))

        assert result.decision is None
        assert client.submitted == []
        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_default_config_applies_to_unconfigured_chat(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Harmful")])
        pipeline = _pipeline(platform, client, clock, config=None, default_config=LIVE)

        result = await pipeline.handle_message(make_message("spam"))
        await pipeline.shutdown()

        assert result.action.kind is ResolvedActionKind.BAN

    @pytest.mark.asyncio
    async def test_trusted_user_is_not_classified_but_blocklist_applies(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        config = LIVE.with_changes(first_messages=1, word_blocklist=("casino",))
        pipeline = _pipeline(platform, client, clock, config=config)

        await pipeline.handle_message(make_message("hello"))
        clock.advance(5)
        plain = await pipeline.handle_message(make_message("how are you"))
        clock.advance(5)
        blocked = await pipeline.handle_message(make_message("best casino"))
        await pipeline.shutdown()

        assert len(client.submitted) == 1
        assert plain.decision is ScrutinyDecision.SKIP_TRUSTED
        assert plain.action.is_allow
        assert blocked.action.trigger is ActionTrigger.WORD_BLOCKLIST

    @pytest.mark.asyncio
    async def test_admin_is_skipped_outside_debug_mode(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Harmful")])
        pipeline = _pipeline(platform, client, clock)

        result = await pipeline.handle_message(make_message("spam", sender_is_admin=True))

        assert result.decision is ScrutinyDecision.SKIP_ADMIN
        assert client.submitted == []

    @pytest.mark.asyncio
    async def test_debug_mode_routes_instead_of_enforcing(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Harmful", "scam")])
        pipeline = _pipeline(platform, client, clock, config=ChatModerationConfig(debug_mode=True))

        result = await pipeline.handle_message(make_message("scam"))

        assert result.action.kind is ResolvedActionKind.ROUTE_TO_MODERATOR
        assert platform.enforcement_calls == []
        assert "would have been banned" in platform.sent[0][1]


class TestMessagesWithoutText:
    @pytest.mark.asyncio
    async def test_tenth_captionless_media_from_different_users_is_not_muted(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        results = [
            await pipeline.handle_message(make_message("", user_id=1000 + i, kind=MessageKind.MEDIA, image=PHOTO))
            for i in range(10)
        ]
        await pipeline.shutdown()

        assert [result.is_flood for result in results] == [False] * 10
        assert platform.calls_named("restrict_member") == []

    @pytest.mark.asyncio
    async def test_third_captionless_photo_from_one_user_is_not_muted(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        results = []
        for _ in range(3):
            results.append(await pipeline.handle_message(make_message("", kind=MessageKind.MEDIA, image=PHOTO)))
            clock.advance(5)
        await pipeline.shutdown()

        assert results[2].is_flood is False
        assert results[2].action.is_allow
        assert platform.enforcement_calls == []


class TestSystemEvents:
    @pytest.mark.asyncio
    async def test_system_event_is_not_counted_or_flood_checked(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock, config=LIVE.with_changes(first_messages=1))

        system = make_message("", kind=MessageKind.SYSTEM)
        event = await pipeline.handle_message(system)
        first = await pipeline.handle_message(make_message("hello everyone"))
        await pipeline.shutdown()

        assert event.decision is None
        # The join did not use up the single scrutinised message
        assert first.decision is ScrutinyDecision.CLASSIFY
        assert len(client.submitted) == 1
        assert system.message_id in pipeline.flood_guard.get_user_message_ids(CHAT, USER)

    @pytest.mark.asyncio
    async def test_many_system_events_never_trip_the_rate_limit(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        for _ in range(5):
            await pipeline.handle_message(make_message("", kind=MessageKind.SYSTEM))
        result = await pipeline.handle_message(make_message("hello"))
        await pipeline.shutdown()

        assert result.is_flood is False

    @pytest.mark.asyncio
    async def test_debug_mode_posts_nothing_for_system_events(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock, config=ChatModerationConfig(debug_mode=True))

        await pipeline.handle_message(make_message("", kind=MessageKind.SYSTEM))
        await pipeline.shutdown()

        assert platform.sent == []
        assert client.submitted == []

    @pytest.mark.asyncio
    async def test_join_message_is_deleted_when_enabled(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock, config=LIVE.with_changes(delete_join_leave_messages=True))

        join = make_message("", kind=MessageKind.SYSTEM, is_join_or_leave=True)
        result = await pipeline.handle_message(join)
        await pipeline.shutdown()

        assert result.outcome.succeeded
        assert platform.calls_named("delete_message") == [("delete_message", CHAT, join.message_id)]

    @pytest.mark.asyncio
    async def test_join_message_is_kept_by_default(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        await pipeline.handle_message(make_message("", kind=MessageKind.SYSTEM, is_join_or_leave=True))
        await pipeline.shutdown()

        assert platform.enforcement_calls == []


class TestScheduling:
    @pytest.mark.asyncio
    async def test_submitted_messages_finish_on_shutdown(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        pipeline.submit(make_message("one"))
        pipeline.submit(make_message("two"))
        assert pipeline.pending == 2

        await pipeline.shutdown()

        assert pipeline.pending == 0
        assert len(client.submitted) == 2

    @pytest.mark.asyncio
    async def test_failure_in_one_message_is_contained(self, platform, clock, make_message):
        client = FakeJudgementClient([completed("Good")])
        pipeline = _pipeline(platform, client, clock)

        class BrokenStore:
            async def get(self, chat_id):
                raise RuntimeError("database is gone")

        pipeline.config_store = BrokenStore()

        task = pipeline.submit(make_message("hello"))
        await pipeline.shutdown()

        assert task.result() is None
