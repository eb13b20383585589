from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from modguard.configuration.ai_settings import AISettings
from modguard.configuration.flood_settings import FloodSettings
from modguard.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``./config/app_config.yml``, exposes dictionary-like
    access helpers, and resolves section specific settings through
    :class:`AISettings` and :class:`FloodSettings`.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
            return {}
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            logger.warning("[APP CONFIGURATION] Config %s is not a mapping; ignoring it.", self.config_path)
            return {}
        return data

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns an empty dict when the file is missing or invalid.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping. Callers should not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    def _section(self, name: str) -> Dict[str, Any]:
        section = self._data.get(name, {})
        return section if isinstance(section, dict) else {}

    @property
    def ai_settings(self) -> AISettings:
        """Return the ``ai_settings`` section wrapped in an AISettings helper."""
        return AISettings(self._section("ai_settings"))

    @property
    def flood_settings(self) -> FloodSettings:
        """Return the ``flood_guard`` section wrapped in a FloodSettings helper."""
        return FloodSettings(self._section("flood_guard"))

    @property
    def database_path(self) -> Path:
        value = self._section("database").get("path") or "./data/modguard.db"
        return Path(str(value)).resolve()

    @property
    def notice_ttl_seconds(self) -> float:
        """How long the deletion notice stays in the chat before it is removed."""
        return float(self._section("moderation").get("notice_ttl_seconds", 60.0))

    @property
    def default_chat_config(self) -> Dict[str, Any]:
        """Mapping used to build the config of chats that have none stored yet."""
        return self._section("default_chat_config")


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
