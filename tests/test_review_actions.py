"""Tests for the moderator review buttons' actions."""

import pytest

from conftest import no_sleep
from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.review_datatypes import ReviewOption, ReviewRequest
from modguard.errors import PlatformError
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.moderation.flood_guard import FloodGuard
from modguard.moderation.review_actions import apply_review_option

CHAT = ChatID(-100)
REVIEW = ReviewRequest(CHAT, MessageID(3), UserID(42), "@user42", "buy followers", reasoning="spam")


@pytest.fixture
def executor(platform):
    return EnforcementExecutor(platform, FloodGuard(), sleep=no_sleep)


@pytest.mark.asyncio
async def test_see_reason_touches_nothing(executor, platform):
    reply = await apply_review_option(executor, REVIEW, ReviewOption.SEE_REASON)

    assert reply == "spam"
    assert platform.calls == []


@pytest.mark.asyncio
async def test_see_reason_without_reasoning(executor):
    review = ReviewRequest(CHAT, MessageID(3), UserID(42), "@user42", "text")

    assert await apply_review_option(executor, review, ReviewOption.SEE_REASON) == "No reasoning was recorded for this message."


@pytest.mark.asyncio
async def test_ban_button(executor, platform):
    reply = await apply_review_option(executor, REVIEW, ReviewOption.BAN)

    assert reply == "@user42 was banned."
    assert platform.calls_named("ban_member") == [("ban_member", CHAT, UserID(42))]
    assert platform.calls_named("delete_message") == [("delete_message", CHAT, MessageID(3))]


@pytest.mark.asyncio
async def test_mute_button_mutes_indefinitely(executor, platform):
    await apply_review_option(executor, REVIEW, ReviewOption.MUTE)

    assert platform.calls_named("restrict_member") == [("restrict_member", CHAT, UserID(42), None)]


@pytest.mark.asyncio
async def test_undelete_button(executor, platform):
    reply = await apply_review_option(executor, REVIEW, ReviewOption.UNDELETE)

    assert reply == "Message restored."
    assert platform.sent[0][1] == "@user42 wrote:\n\nbuy followers"


@pytest.mark.asyncio
async def test_failure_is_reported_to_moderator(executor, platform):
    platform.errors["unban_member"] = PlatformError("Bad Request: user not found")

    reply = await apply_review_option(executor, REVIEW, ReviewOption.UNBAN)

    assert reply == "Failed to unban user: user not found"
