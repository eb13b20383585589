import textwrap

from modguard.configuration.app_configuration import AppConfig


def _write(tmp_path, content):
    path = tmp_path / "app_config.yml"
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


def test_sections_are_exposed(tmp_path, monkeypatch):
    monkeypatch.setenv("MODGUARD_TEST_KEY", "sk-test")
    path = _write(tmp_path, """
        ai_settings:
          api_key_env: MODGUARD_TEST_KEY
          default_model: judge-large
          fallback_model: judge-small
          daily_model_quota: 200
        flood_guard:
          user_duplicate_threshold: 5
        moderation:
          notice_ttl_seconds: 30
        default_chat_config:
          debug_mode: false
    """)

    config = AppConfig(path)

    assert config.ai_settings.api_key == "sk-test"
    assert config.ai_settings.default_model == "judge-large"
    assert config.ai_settings.fallback_model == "judge-small"
    assert config.ai_settings.daily_model_quota == 200
    assert config.flood_settings.limits().user_duplicate_threshold == 5
    assert config.flood_settings.limits().chat_duplicate_threshold == 10
    assert config.notice_ttl_seconds == 30.0
    assert config.default_chat_config == {"debug_mode": False}


def test_missing_file_yields_defaults(tmp_path):
    config = AppConfig(tmp_path / "absent.yml")

    assert config.data == {}
    assert config.ai_settings.default_model == "gpt-4.1-mini"
    assert config.ai_settings.fallback_model is None
    assert config.flood_settings.max_idle_seconds == 86400.0


def test_non_mapping_file_is_ignored(tmp_path):
    config = AppConfig(_write(tmp_path, "- just\n- a list\n"))

    assert config.data == {}


def test_reload_picks_up_changes(tmp_path):
    path = _write(tmp_path, "moderation:\n  notice_ttl_seconds: 10\n")
    config = AppConfig(path)
    path.write_text("moderation:\n  notice_ttl_seconds: 20\n", encoding="utf-8")

    config.reload()

    assert config.notice_ttl_seconds == 20.0
