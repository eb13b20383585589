import os
from typing import Any, Dict


class AISettings:
    """Helper exposing typed accessors for the judgement service configuration.

    This class intentionally provides a minimal, explicit API (`get`,
    `as_dict`, and convenience properties) and does not implement the full
    mapping protocol.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        """Return the underlying mapping."""
        return self.data

    @property
    def api_key_env(self) -> str:
        return str(self.data.get("api_key_env") or "OPENAI_API_KEY")

    @property
    def api_key(self) -> str | None:
        """API key read from the environment variable named by ``api_key_env``."""
        return os.getenv(self.api_key_env) or None

    @property
    def base_url(self) -> str | None:
        val = self.data.get("base_url")
        return str(val) if val else None

    @property
    def default_model(self) -> str:
        return str(self.data.get("default_model") or "gpt-4.1-mini")

    @property
    def fallback_model(self) -> str | None:
        val = self.data.get("fallback_model")
        return str(val) if val else None

    @property
    def daily_model_quota(self) -> int:
        """Messages per chat per day classified with the configured model. 0 disables the quota."""
        return int(self.data.get("daily_model_quota", 0))

    @property
    def poll_interval_seconds(self) -> float:
        return float(self.data.get("poll_interval_seconds", 1.0))

    @property
    def chat_title_cache_seconds(self) -> int:
        return int(self.data.get("chat_title_cache_seconds", 300))

    @property
    def system_prompt(self) -> str:
        return str(self.data.get("system_prompt") or "")
