from typing import Any, Dict

from modguard.moderation.flood_guard import FloodGuardLimits


class FloodSettings:
    """Typed accessors for the ``flood_guard`` section of the app config."""

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    @property
    def eviction_interval_seconds(self) -> float:
        return float(self.data.get("eviction_interval_seconds", 600.0))

    @property
    def max_idle_seconds(self) -> float:
        return float(self.data.get("max_idle_seconds", 86400.0))

    def limits(self) -> FloodGuardLimits:
        """Build flood guard limits, keeping the defaults for missing keys."""
        defaults = FloodGuardLimits()
        return FloodGuardLimits(
            bucket_capacity=float(self.data.get("bucket_capacity", defaults.bucket_capacity)),
            refill_per_second=float(self.data.get("refill_per_second", defaults.refill_per_second)),
            chat_window_size=int(self.data.get("chat_window_size", defaults.chat_window_size)),
            chat_duplicate_threshold=int(self.data.get("chat_duplicate_threshold", defaults.chat_duplicate_threshold)),
            user_window_seconds=float(self.data.get("user_window_seconds", defaults.user_window_seconds)),
            user_duplicate_threshold=int(self.data.get("user_duplicate_threshold", defaults.user_duplicate_threshold)),
            user_history_cap=int(self.data.get("user_history_cap", defaults.user_history_cap)),
        )
