import pytest

from modguard.datatypes.chat_config import ALL_MESSAGES, ChatModerationConfig
from modguard.moderation.scrutiny import ScrutinyContext, ScrutinyDecision, decide_scrutiny


def test_disabled_chat_is_skipped():
    config = ChatModerationConfig(enabled=False)

    decision = decide_scrutiny(config, ScrutinyContext(sender_is_admin=False, messages_seen=0))

    assert decision is ScrutinyDecision.SKIP_DISABLED
    assert not decision.moderates


def test_admin_is_skipped_outside_debug_mode():
    config = ChatModerationConfig(debug_mode=False)

    decision = decide_scrutiny(config, ScrutinyContext(sender_is_admin=True, messages_seen=0))

    assert decision is ScrutinyDecision.SKIP_ADMIN
    assert not decision.moderates


def test_admin_is_classified_in_debug_mode():
    config = ChatModerationConfig(debug_mode=True)

    decision = decide_scrutiny(config, ScrutinyContext(sender_is_admin=True, messages_seen=0))

    assert decision is ScrutinyDecision.CLASSIFY


@pytest.mark.parametrize("seen, expected", [
    (0, ScrutinyDecision.CLASSIFY),
    (2, ScrutinyDecision.CLASSIFY),
    (3, ScrutinyDecision.SKIP_TRUSTED),
    (40, ScrutinyDecision.SKIP_TRUSTED),
])
def test_only_first_messages_are_classified(seen, expected):
    config = ChatModerationConfig(first_messages=3)

    assert decide_scrutiny(config, ScrutinyContext(False, seen)) is expected


def test_trusted_users_still_get_cheap_checks():
    assert ScrutinyDecision.SKIP_TRUSTED.moderates


def test_all_messages_are_classified_when_configured():
    config = ChatModerationConfig(first_messages=ALL_MESSAGES)

    assert decide_scrutiny(config, ScrutinyContext(False, 1_000_000)) is ScrutinyDecision.CLASSIFY


def test_zero_first_messages_trusts_everyone():
    config = ChatModerationConfig(first_messages=0)

    assert decide_scrutiny(config, ScrutinyContext(False, 0)) is ScrutinyDecision.SKIP_TRUSTED
