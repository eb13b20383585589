"""Message listener Cog for Modguard.

Turns incoming Discord messages into :class:`ModerationMessage` objects and
hands them to the moderation pipeline, one task per message.
"""

from __future__ import annotations

import discord
from discord.ext import commands

from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.moderation_datatypes import MessageKind, ModerationImage, ModerationMessage
from modguard.moderation.moderation_pipeline import ModerationPipeline
from modguard.util.logger import get_logger

logger = get_logger("message_listener_cog")

# Message types that carry member content; everything else is a system event
CONTENT_MESSAGE_TYPES = (discord.MessageType.default, discord.MessageType.reply)
# Discord announces joins only; there is no leave message
JOIN_LEAVE_MESSAGE_TYPES = (discord.MessageType.new_member,)


def is_image_attachment(attachment: discord.Attachment) -> bool:
    content_type = attachment.content_type or ""
    if content_type.startswith("image/"):
        return True
    return attachment.filename.lower().endswith((".png", ".jpg", ".jpeg", ".gif", ".webp"))


def is_chat_admin(author: discord.abc.User) -> bool:
    if not isinstance(author, discord.Member):
        return False
    perms = author.guild_permissions
    return perms.administrator or perms.manage_guild


def to_moderation_message(message: discord.Message) -> ModerationMessage:
    """Build the platform independent view of a Discord message."""
    image = None
    for attachment in message.attachments:
        if is_image_attachment(attachment):
            image = ModerationImage(url=attachment.url, mime_type=attachment.content_type)
            break

    if message.type not in CONTENT_MESSAGE_TYPES:
        kind = MessageKind.SYSTEM
    elif message.content:
        kind = MessageKind.TEXT
    elif message.attachments or message.stickers:
        kind = MessageKind.MEDIA
    else:
        kind = MessageKind.SYSTEM

    channel_name = getattr(message.channel, "name", None)
    guild_name = message.guild.name if message.guild else None
    chat_title = f"#{channel_name} ({guild_name})" if channel_name and guild_name else None

    return ModerationMessage(
        chat_id=ChatID(message.channel.id),
        message_id=MessageID(message.id),
        user_id=UserID(message.author.id),
        sender_name=message.author.mention,
        text=message.content or "",
        kind=kind,
        image=image,
        # Webhook posts speak for a channel or integration, not a member
        sender_chat_id=ChatID(message.webhook_id) if message.webhook_id else None,
        sender_is_admin=is_chat_admin(message.author),
        chat_title=chat_title,
        is_join_or_leave=message.type in JOIN_LEAVE_MESSAGE_TYPES,
    )


class MessageListenerCog(commands.Cog):
    """Cog responsible for feeding new messages into the moderation pipeline."""

    def __init__(self, discord_bot_instance: discord.Bot, pipeline: ModerationPipeline):
        self.bot = discord_bot_instance
        self.pipeline = pipeline
        logger.info("[MESSAGE LISTENER] Message listener cog loaded")

    @staticmethod
    def should_moderate(message: discord.Message, bot_user: discord.ClientUser | None) -> bool:
        if message.guild is None:
            return False
        if bot_user is not None and message.author.id == bot_user.id:
            return False
        # Other bots are moderated only when they post through a webhook
        return not message.author.bot or message.webhook_id is not None

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if not self.should_moderate(message, self.bot.user):
            return
        self.pipeline.submit(to_moderation_message(message))


def setup(discord_bot_instance: discord.Bot, pipeline: ModerationPipeline) -> None:
    """Register the message listener cog with the bot."""
    discord_bot_instance.add_cog(MessageListenerCog(discord_bot_instance, pipeline))
