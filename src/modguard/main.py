"""
Modguard
========

A Discord bot that screens members' messages for spam, scams and rule
violations. Cheap flood and blocklist checks run on every message; a
language model judges each user's first messages against the rules the chat
admins wrote, and the verdict is enforced or sent to moderators for review.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODGUARD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODGUARD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from modguard.ai.classification_engine import ClassificationEngine
from modguard.ai.judgement_client import OpenAIJudgementClient
from modguard.ai.model_selection import ConfiguredModelPolicy, DailyQuotaModelPolicy, ModelSelectionPolicy
from modguard.bot.cogs import flood_eviction, message_listener, moderation_cmds
from modguard.bot.review_ui import review_view_factory
from modguard.configuration.ai_settings import AISettings
from modguard.configuration.app_configuration import app_config
from modguard.database.db_connection import ConnectionManager
from modguard.database.db_schema import SchemaManager
from modguard.database.moderation_log import SqliteModerationLog
from modguard.database.scheduled_deletions import SqliteScheduledDeletions
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.errors import ConfigError
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.moderation.flood_guard import FloodGuard
from modguard.moderation.moderation_pipeline import ModerationPipeline
from modguard.moderation.moderator_commands import ModeratorCommands
from modguard.platform.discord_platform import DiscordChatPlatform
from modguard.settings.chat_config_store import SqliteChatConfigStore
from modguard.util.logger import get_logger, handle_exception


logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for reading message content and resolving members."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.members = True
    return intents


def build_model_policy(ai_settings: AISettings) -> ModelSelectionPolicy:
    """Use the daily quota policy when a quota and a fallback model are configured."""
    fallback = ai_settings.fallback_model
    if fallback and ai_settings.daily_model_quota > 0:
        logger.info(
            "Model quota: %d messages per chat per day, then %s", ai_settings.daily_model_quota, fallback
        )
        return DailyQuotaModelPolicy(ai_settings.daily_model_quota, fallback)
    return ConfiguredModelPolicy(fallback)


def build_default_chat_config() -> ChatModerationConfig | None:
    """Config for chats without a stored one, or None to leave them unmoderated."""
    data = app_config.default_chat_config
    if not data:
        return None
    data = {"model": app_config.ai_settings.default_model, **data}
    try:
        return ChatModerationConfig.from_dict(data)
    except ConfigError as exc:
        logger.error("Ignoring invalid default_chat_config: %s", exc)
        return None


async def build_pipeline(bot: discord.Bot, connection: ConnectionManager) -> ModerationPipeline:
    """Create every moderation component and wire them to the bot."""
    ai_settings = app_config.ai_settings
    flood_settings = app_config.flood_settings

    platform = DiscordChatPlatform(bot)
    flood_guard = FloodGuard(flood_settings.limits())
    action_log = SqliteModerationLog(connection)
    config_store = SqliteChatConfigStore(connection)
    default_config = build_default_chat_config()
    executor = EnforcementExecutor(
        platform,
        flood_guard,
        action_log=action_log,
        notice_ttl=app_config.notice_ttl_seconds,
        deletion_store=SqliteScheduledDeletions(connection),
    )
    platform.review_view_factory = review_view_factory(executor)

    engine = ClassificationEngine(
        OpenAIJudgementClient.from_settings(ai_settings.api_key, ai_settings.base_url),
        model_policy=build_model_policy(ai_settings),
        title_source=platform,
        poll_interval=ai_settings.poll_interval_seconds,
        instructions=ai_settings.system_prompt,
        title_cache_seconds=ai_settings.chat_title_cache_seconds,
    )
    pipeline = ModerationPipeline(
        flood_guard,
        engine,
        executor,
        config_store,
        default_config=default_config,
    )

    message_listener.setup(bot, pipeline)
    moderation_cmds.setup(bot, ModeratorCommands(executor, config_store, default_config, action_log))
    flood_eviction.setup(
        bot, flood_guard, flood_settings.eviction_interval_seconds, flood_settings.max_idle_seconds
    )
    logger.info("All cogs loaded successfully.")
    return pipeline


async def open_database() -> ConnectionManager:
    connection = ConnectionManager()
    await connection.open(app_config.database_path)
    await SchemaManager.initialize_schema(connection.connection)
    return connection


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and log around the connection."""
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(
    bot: discord.Bot | None, pipeline: ModerationPipeline | None, connection: ConnectionManager | None
) -> None:
    """Gracefully stop the bot, drain the pipeline and close the database."""
    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    if pipeline is not None:
        try:
            await pipeline.shutdown()
        except Exception as exc:
            logger.exception("Error during moderation pipeline shutdown: %s", exc)

    if connection is not None:
        await connection.close()

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, pipeline and bot, returning an exit code."""
    token = load_environment()

    try:
        logger.info("Initializing database...")
        connection = await open_database()
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    bot: discord.Bot | None = None
    pipeline: ModerationPipeline | None = None
    exit_code = 0
    try:
        bot = discord.Bot(intents=build_intents())
        pipeline = await build_pipeline(bot, connection)
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, pipeline, connection)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Modguard…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1


if __name__ == "__main__":
    sys.exit(main())
