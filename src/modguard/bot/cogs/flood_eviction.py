"""Background cog that drops idle flood guard state."""

from __future__ import annotations

import discord
from discord.ext import commands, tasks

from modguard.moderation.flood_guard import FloodGuard
from modguard.util.logger import get_logger

logger = get_logger("flood_eviction_cog")


class FloodEvictionCog(commands.Cog):
    """Periodically evicts per-user flood state nobody has touched for a while."""

    def __init__(self, bot: discord.Bot, flood_guard: FloodGuard, interval_seconds: float, max_idle_seconds: float) -> None:
        self.bot = bot
        self.flood_guard = flood_guard
        self.interval_seconds = interval_seconds
        self.max_idle_seconds = max_idle_seconds

    @tasks.loop(seconds=600)  # real interval set in on_ready
    async def _evict_task(self) -> None:
        self.flood_guard.evict_idle(self.max_idle_seconds)

    @_evict_task.before_loop
    async def _before_evict(self) -> None:
        await self.bot.wait_until_ready()

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        self._evict_task.change_interval(seconds=self.interval_seconds)
        if not self._evict_task.is_running():
            self._evict_task.start()
            logger.info("[FLOOD EVICTION] Started (interval=%.1fs)", self.interval_seconds)

    def cog_unload(self) -> None:
        self._evict_task.cancel()
        logger.info("[FLOOD EVICTION] Stopped")


def setup(bot: discord.Bot, flood_guard: FloodGuard, interval_seconds: float, max_idle_seconds: float) -> None:
    bot.add_cog(FloodEvictionCog(bot, flood_guard, interval_seconds, max_idle_seconds))
