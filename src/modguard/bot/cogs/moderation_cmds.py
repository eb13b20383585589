"""
Moderation cog: commands moderators use to act on members by hand.

Slash commands cover members (``/ban``, ``/mute``, ``/modlog``); message
context-menu commands cover single messages ("Delete message", "Report
message"), since a slash command cannot point at a message. Every command
answers ephemerally.

Design notes
- Commands perform the usual safety checks before reaching the core: the
  target must be a member of this server, moderators cannot act on
  themselves and administrators are protected.
- Chat toggles and the invoker's rights are enforced by
  :class:`~modguard.moderation.moderator_commands.ModeratorCommands`.
- Once connected, the cog restarts notice removals left over from the last run.
"""

import discord
from discord import Option
from discord.ext import commands

from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.moderation_datatypes import EnforcementTarget
from modguard.moderation.moderator_commands import (
    MUTE_DURATIONS,
    CommandInvoker,
    ModeratorCommands,
    ReportedMessage,
    parse_mute_duration,
)
from modguard.util.logger import get_logger

logger = get_logger("moderation_cog")

DURATION_CHOICES = list(MUTE_DURATIONS.keys())


def command_invoker(author: discord.abc.User) -> CommandInvoker:
    """Translate the invoking user's guild permissions into command rights."""
    if not isinstance(author, discord.Member):
        return CommandInvoker(name=str(author))
    perms = author.guild_permissions
    return CommandInvoker(
        name=str(author),
        can_ban=perms.administrator or perms.ban_members,
        can_mute=perms.administrator or perms.moderate_members,
        can_delete=perms.administrator or perms.manage_messages,
    )


def reported_message(message: discord.Message) -> ReportedMessage:
    sender_chat = ChatID(message.webhook_id) if message.webhook_id else None
    return ReportedMessage(
        chat_id=ChatID(message.channel.id),
        message_id=MessageID(message.id),
        target=EnforcementTarget(UserID(message.author.id), message.author.mention, sender_chat),
        text=message.content or "",
    )


class ModerationActionCog(commands.Cog):
    """Cog containing the manual moderation commands."""

    def __init__(self, discord_bot_instance: discord.Bot, moderator_commands: ModeratorCommands):
        self.discord_bot_instance = discord_bot_instance
        self.moderator_commands = moderator_commands
        self._resumed = False
        logger.info("[MODERATION COG] Moderation cog loaded")

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        # on_ready fires again after reconnects
        if self._resumed:
            return
        self._resumed = True
        await self.moderator_commands.executor.resume_scheduled_deletions()

    @staticmethod
    def target_refusal(ctx: discord.ApplicationContext, target_user: discord.abc.User) -> str | None:
        """Shared pre-checks on the member a command acts on; returns the refusal text or None."""
        if not isinstance(target_user, discord.Member):
            return "The specified user is not a member of this server."
        if target_user.id == ctx.author.id:
            return "You cannot perform moderation actions on yourself."
        if target_user.guild_permissions.administrator:
            return "You cannot perform moderation actions against administrators."
        return None

    async def _reply(self, ctx: discord.ApplicationContext, text: str) -> None:
        try:
            await ctx.send_followup(text, ephemeral=True)
        except discord.HTTPException as exc:
            logger.error("[MODERATION COG] Failed to answer %s: %s", ctx.author, exc)

    @commands.slash_command(name="ban", description="Ban a member and remove their recent messages.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member to ban.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        refusal = self.target_refusal(ctx, user)
        if refusal:
            await self._reply(ctx, refusal)
            return

        target = EnforcementTarget(UserID(user.id), user.mention)
        reply = await self.moderator_commands.ban(ChatID(ctx.channel.id), command_invoker(ctx.author), target)
        await self._reply(ctx, reply)

    @commands.slash_command(name="mute", description="Mute a member for a while, or for good.")
    async def mute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member to mute.", required=True),  # type: ignore
        duration: Option(str, "How long to mute for.", choices=DURATION_CHOICES, default="10 mins"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        refusal = self.target_refusal(ctx, user)
        if refusal:
            await self._reply(ctx, refusal)
            return

        target = EnforcementTarget(UserID(user.id), user.mention)
        reply = await self.moderator_commands.mute(
            ChatID(ctx.channel.id), command_invoker(ctx.author), target, parse_mute_duration(duration)
        )
        await self._reply(ctx, reply)

    @commands.slash_command(name="modlog", description="Show the latest moderation actions in this channel.")
    async def modlog(
        self,
        ctx: discord.ApplicationContext,
        limit: Option(int, "How many actions to show.", min_value=1, max_value=25, default=10),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        reply = await self.moderator_commands.history(ChatID(ctx.channel.id), command_invoker(ctx.author), limit)
        await self._reply(ctx, reply)

    @commands.message_command(name="Delete message")
    async def delete_message(self, ctx: discord.ApplicationContext, message: discord.Message) -> None:
        await ctx.defer(ephemeral=True)
        reply = await self.moderator_commands.delete(command_invoker(ctx.author), reported_message(message))
        await self._reply(ctx, reply)

    @commands.message_command(name="Report message")
    async def report_message(self, ctx: discord.ApplicationContext, message: discord.Message) -> None:
        await ctx.defer(ephemeral=True)
        reply = await self.moderator_commands.report(command_invoker(ctx.author), reported_message(message))
        await self._reply(ctx, reply)


def setup(discord_bot_instance: discord.Bot, moderator_commands: ModeratorCommands) -> None:
    """Register the moderation cog with the bot."""
    discord_bot_instance.add_cog(ModerationActionCog(discord_bot_instance, moderator_commands))
