import datetime

from modguard.ai.model_selection import ConfiguredModelPolicy, DailyQuotaModelPolicy
from modguard.datatypes.chat_datatypes import ChatID

CHAT = ChatID(-100)


class TestConfiguredModelPolicy:
    def test_uses_configured_model(self):
        assert ConfiguredModelPolicy("backup").select(CHAT, "primary") == "primary"

    def test_fallback_differs_from_failed_model(self):
        policy = ConfiguredModelPolicy("backup")

        assert policy.fallback("primary") == "backup"
        assert policy.fallback("backup") is None

    def test_no_fallback_configured(self):
        assert ConfiguredModelPolicy().fallback("primary") is None


class TestDailyQuotaModelPolicy:
    def test_switches_to_fallback_after_quota(self):
        policy = DailyQuotaModelPolicy(2, "backup", today=lambda: datetime.date(2025, 1, 1))

        models = [policy.select(CHAT, "primary") for _ in range(4)]

        assert models == ["primary", "primary", "backup", "backup"]

    def test_quota_is_per_chat(self):
        policy = DailyQuotaModelPolicy(1, "backup", today=lambda: datetime.date(2025, 1, 1))
        policy.select(CHAT, "primary")

        assert policy.select(ChatID(-200), "primary") == "primary"

    def test_quota_resets_the_next_day(self):
        day = [datetime.date(2025, 1, 1)]
        policy = DailyQuotaModelPolicy(1, "backup", today=lambda: day[0])
        policy.select(CHAT, "primary")
        assert policy.select(CHAT, "primary") == "backup"

        day[0] = datetime.date(2025, 1, 2)

        assert policy.select(CHAT, "primary") == "primary"

    def test_fallback_model_is_not_counted(self):
        policy = DailyQuotaModelPolicy(1, "backup", today=lambda: datetime.date(2025, 1, 1))

        policy.select(CHAT, "backup")

        assert policy.select(CHAT, "primary") == "primary"
