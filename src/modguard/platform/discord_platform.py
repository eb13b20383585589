"""
Discord implementation of the chat platform boundary, on top of py-cord.

A moderated "chat" is a Discord text channel: messages are deleted in that
channel while mutes (timeouts) and bans apply to the guild that owns it.
Discord has no way to ban a webhook or linked channel as a sender, so the
sender-chat calls always fail with a PlatformError.
"""

from __future__ import annotations

import datetime
from typing import Callable, Sequence

import discord

from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.review_datatypes import ReviewRequest
from modguard.errors import PermissionDeniedError, PlatformError
from modguard.platform.chat_platform import BotPermissions
from modguard.util.logger import get_logger

logger = get_logger("discord_platform")

# Discord caps timeouts at 28 days
MAX_TIMEOUT = datetime.timedelta(days=28)
MAX_MESSAGE_LENGTH = 2000
AUDIT_REASON = "Modguard automatic moderation"


def _error_text(exc: discord.HTTPException) -> str:
    return exc.text or str(exc)


class DiscordChatPlatform:
    """
    Args:
        bot: Connected py-cord bot.
        review_view_factory: Builds the button view attached to review
            requests. Set after construction because the view needs the
            executor, which in turn needs this platform.
    """

    max_batch_delete = 100

    def __init__(
        self,
        bot: discord.Bot,
        review_view_factory: Callable[[ReviewRequest], discord.ui.View] | None = None,
    ) -> None:
        self.bot = bot
        self.review_view_factory = review_view_factory

    # ========== Lookups ==========

    async def _channel(self, chat_id: ChatID) -> discord.TextChannel:
        channel = self.bot.get_channel(chat_id.to_int())
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(chat_id.to_int())
            except discord.HTTPException as exc:
                raise PlatformError(f"Chat {chat_id} is not reachable: {_error_text(exc)}") from exc
        if not isinstance(channel, (discord.TextChannel, discord.Thread)):
            raise PlatformError(f"Chat {chat_id} is not a guild text channel")
        return channel  # type: ignore[return-value]

    async def _member(self, guild: discord.Guild, user_id: UserID) -> discord.Member:
        member = guild.get_member(user_id.to_int())
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id.to_int())
        except discord.NotFound as exc:
            raise PlatformError("User not found in this server") from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def get_bot_permissions(self, chat_id: ChatID) -> BotPermissions:
        channel = await self._channel(chat_id)
        permissions = channel.permissions_for(channel.guild.me)
        return BotPermissions(
            can_delete_messages=permissions.manage_messages,
            can_restrict_members=permissions.moderate_members,
            can_ban_members=permissions.ban_members,
        )

    async def get_chat_title(self, chat_id: ChatID) -> str:
        channel = await self._channel(chat_id)
        return f"#{channel.name} ({channel.guild.name})"

    # ========== Messages ==========

    async def delete_message(self, chat_id: ChatID, message_id: MessageID) -> None:
        channel = await self._channel(chat_id)
        try:
            await channel.get_partial_message(message_id.to_int()).delete()
        except discord.NotFound as exc:
            raise PlatformError("Message to delete not found") from exc
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def delete_messages(self, chat_id: ChatID, message_ids: Sequence[MessageID]) -> None:
        if len(message_ids) > self.max_batch_delete:
            raise ValueError(f"At most {self.max_batch_delete} messages can be deleted per call")
        if not message_ids:
            return
        channel = await self._channel(chat_id)
        try:
            await channel.delete_messages([discord.Object(id=message_id.to_int()) for message_id in message_ids])
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except (discord.HTTPException, discord.ClientException) as exc:
            raise PlatformError(str(exc)) from exc

    async def send_message(self, chat_id: ChatID, text: str, review: ReviewRequest | None = None) -> MessageID:
        channel = await self._channel(chat_id)
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH - 1] + "…"
        view = self.review_view_factory(review) if review is not None and self.review_view_factory else None
        try:
            if view is not None:
                message = await channel.send(text, view=view, allowed_mentions=discord.AllowedMentions.none())
            else:
                message = await channel.send(text, allowed_mentions=discord.AllowedMentions.none())
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc
        return MessageID(message.id)

    # ========== Members ==========

    async def restrict_member(self, chat_id: ChatID, user_id: UserID, until: datetime.datetime | None = None) -> None:
        channel = await self._channel(chat_id)
        member = await self._member(channel.guild, user_id)
        latest = discord.utils.utcnow() + MAX_TIMEOUT
        if until is None or until > latest:
            until = latest
        try:
            await member.timeout(until, reason=AUDIT_REASON)
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def unrestrict_member(self, chat_id: ChatID, user_id: UserID) -> None:
        channel = await self._channel(chat_id)
        member = await self._member(channel.guild, user_id)
        try:
            await member.remove_timeout(reason=AUDIT_REASON)
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def ban_member(self, chat_id: ChatID, user_id: UserID) -> None:
        channel = await self._channel(chat_id)
        try:
            await channel.guild.ban(discord.Object(id=user_id.to_int()), reason=AUDIT_REASON)
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def unban_member(self, chat_id: ChatID, user_id: UserID) -> None:
        channel = await self._channel(chat_id)
        try:
            await channel.guild.unban(discord.Object(id=user_id.to_int()), reason=AUDIT_REASON)
        except discord.NotFound as exc:
            raise PlatformError("User is not banned") from exc
        except discord.Forbidden as exc:
            raise PermissionDeniedError(_error_text(exc)) from exc
        except discord.HTTPException as exc:
            raise PlatformError(_error_text(exc)) from exc

    async def ban_sender_chat(self, chat_id: ChatID, sender_chat_id: ChatID) -> None:
        raise PlatformError("Discord does not support banning a sender channel")

    async def unban_sender_chat(self, chat_id: ChatID, sender_chat_id: ChatID) -> None:
        raise PlatformError("Discord does not support banning a sender channel")
