"""
Interactive buttons attached to moderation audit notifications.

Each notification offers the manual actions that make sense for what the bot
did (or would have done in testing mode): undo a ban, mute or deletion, or
apply one by hand. Clicks are restricted to members with moderator rights.
"""

from __future__ import annotations

from typing import Awaitable, Callable

import discord

from modguard.datatypes.review_datatypes import ReviewOption, ReviewRequest
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.moderation.review_actions import apply_review_option
from modguard.util.logger import get_logger

logger = get_logger("review_ui")

BUTTON_STYLES: dict[ReviewOption, discord.ButtonStyle] = {
    ReviewOption.DELETE: discord.ButtonStyle.danger,
    ReviewOption.BAN: discord.ButtonStyle.danger,
    ReviewOption.MUTE: discord.ButtonStyle.secondary,
    ReviewOption.UNBAN: discord.ButtonStyle.success,
    ReviewOption.UNMUTE: discord.ButtonStyle.success,
    ReviewOption.UNDELETE: discord.ButtonStyle.success,
    ReviewOption.SEE_REASON: discord.ButtonStyle.primary,
}


def has_review_permission(member: discord.User | discord.Member) -> bool:
    """Moderator-level privileges: administrator, manage guild, moderate members or manage messages."""
    if not isinstance(member, discord.Member):
        return False

    perms = member.guild_permissions
    return any(
        getattr(perms, attr, False)
        for attr in (
            "administrator",
            "manage_guild",
            "moderate_members",
            "manage_messages",
        )
    )


class ModerationReviewView(discord.ui.View):
    """
    Buttons for one review request.

    The view keeps the request in memory, so it stops working after a
    restart; the audit text itself stays readable.
    """

    def __init__(self, review: ReviewRequest, executor: EnforcementExecutor):
        super().__init__(timeout=None)
        self.review = review
        self.executor = executor

        for option in review.options:
            button = discord.ui.Button(
                label=option.label,
                style=BUTTON_STYLES[option],
                custom_id=f"modguard:{option.value}:{review.chat_id}:{review.message_id}",
            )
            button.callback = self._make_callback(option, button)
            self.add_item(button)

    def _make_callback(
        self, option: ReviewOption, button: discord.ui.Button
    ) -> Callable[[discord.Interaction], Awaitable[None]]:
        async def callback(interaction: discord.Interaction) -> None:
            await self.handle_option(interaction, option, button)

        return callback

    async def handle_option(
        self, interaction: discord.Interaction, option: ReviewOption, button: discord.ui.Button
    ) -> None:
        """Check the clicking member's rights, run the option and answer ephemerally."""
        if interaction.user is None or not has_review_permission(interaction.user):
            await interaction.response.send_message(
                "❌ You don't have permission to review moderation actions.",
                ephemeral=True,
            )
            return

        if option is not ReviewOption.SEE_REASON:
            await interaction.response.defer(ephemeral=True)

        reply = await apply_review_option(self.executor, self.review, option, moderator=str(interaction.user))

        if option is ReviewOption.SEE_REASON:
            await interaction.response.send_message(reply, ephemeral=True)
            return

        button.disabled = True
        try:
            if interaction.message is not None:
                await interaction.message.edit(view=self)
        except discord.HTTPException as exc:
            logger.warning("[REVIEW UI] Could not update review buttons: %s", exc)
        await interaction.followup.send(reply, ephemeral=True)


def review_view_factory(executor: EnforcementExecutor) -> Callable[[ReviewRequest], discord.ui.View]:
    """Factory handed to the Discord platform so audit posts get review buttons."""

    def build(review: ReviewRequest) -> discord.ui.View:
        return ModerationReviewView(review, executor)

    return build
