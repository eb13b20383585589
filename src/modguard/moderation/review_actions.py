"""Manual moderator actions triggered from review notifications."""

from __future__ import annotations

from modguard.datatypes.moderation_datatypes import EnforcementOutcome, EnforcementStatus, EnforcementTarget
from modguard.datatypes.review_datatypes import ReviewOption, ReviewRequest
from modguard.moderation.audit_messages import build_failure_text
from modguard.moderation.enforcement_executor import EnforcementExecutor
from modguard.util.logger import get_logger

logger = get_logger("review_actions")

SUCCESS_MESSAGES = {
    ReviewOption.DELETE: "Message deleted.",
    ReviewOption.BAN: "{sender} was banned.",
    ReviewOption.MUTE: "{sender} was muted.",
    ReviewOption.UNBAN: "{sender} was unbanned.",
    ReviewOption.UNMUTE: "{sender} was unmuted.",
    ReviewOption.UNDELETE: "Message restored.",
}


async def run_review_option(
    executor: EnforcementExecutor, review: ReviewRequest, option: ReviewOption
) -> EnforcementOutcome:
    """Execute the manual action behind a review button."""
    target = EnforcementTarget(review.user_id, review.sender_name, review.sender_chat_id)

    if option is ReviewOption.DELETE:
        return await executor.delete(review.chat_id, review.message_id)
    if option is ReviewOption.BAN:
        return await executor.ban(review.chat_id, target, review.message_id)
    if option is ReviewOption.MUTE:
        return await executor.mute(review.chat_id, target, None, review.message_id)
    if option is ReviewOption.UNBAN:
        return await executor.unban(review.chat_id, target)
    if option is ReviewOption.UNMUTE:
        return await executor.unmute(review.chat_id, target)
    if option is ReviewOption.UNDELETE:
        return await executor.undelete(review)
    return EnforcementOutcome(EnforcementStatus.SKIPPED, "Nothing to do")


async def apply_review_option(
    executor: EnforcementExecutor, review: ReviewRequest, option: ReviewOption, moderator: str = "a moderator"
) -> str:
    """
    Run a review option and return the text to show the moderator.

    See Reason never touches the platform; it returns the classifier reasoning.
    """
    if option is ReviewOption.SEE_REASON:
        return review.reasoning or "No reasoning was recorded for this message."

    outcome = await run_review_option(executor, review, option)
    logger.info(
        "[REVIEW] %s chose %s for message %s in %s: %s",
        moderator, option, review.message_id, review.chat_id, outcome.status,
    )
    if outcome.succeeded:
        return SUCCESS_MESSAGES[option].format(sender=review.sender_name)
    return build_failure_text(option, outcome.message)
