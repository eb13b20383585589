"""
Classification of messages through the external judgement service.

Each call runs one job through an explicit state machine::

    CREATED -> SUBMITTED -> {QUEUED, RUNNING} -> {COMPLETED, FAILED, EXPIRED}

Only COMPLETED with a schema-valid payload yields a real verdict. Every other
ending, and any client error along the way, fails open: the message is
judged Good with no reasoning. A failing model is retried once on the
fallback model of the selection policy first.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Protocol

from modguard.ai.judgement_client import (
    ClassificationRequest,
    JobSnapshot,
    JobState,
    JudgementClient,
)
from modguard.ai.model_selection import ConfiguredModelPolicy, ModelSelectionPolicy
from modguard.ai.verdict_parsing import parse_verdict_payload
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.chat_datatypes import ChatID
from modguard.datatypes.moderation_datatypes import (
    MessageKind,
    ModerationJudgement,
    ModerationMessage,
    ModerationVerdict,
)
from modguard.errors import ClassificationError, PlatformError
from modguard.moderation.content_checks import is_command
from modguard.util.logger import get_logger
from modguard.util.ttl_cache import TTLCache

logger = get_logger("classification_engine")

DEFAULT_INSTRUCTIONS = (
    "You are a moderator of a group chat. You receive one message sent by a "
    "member and decide whether it breaks the rules set by the chat admins.\n"
    "Answer with a JSON object with two fields: 'judgement' and 'reasoning'.\n"
    "'judgement' is one of:\n"
    "- Good: the message is fine, or there is not enough context to tell.\n"
    "- Inform: the message mildly breaks the rules; it should be removed but the sender is probably not malicious.\n"
    "- Suspicious: the message likely breaks the rules or looks like the start of a scam.\n"
    "- Harmful: the message clearly breaks the rules (spam, scam, impersonation).\n"
    "'reasoning' briefly explains the judgement to the chat moderators."
)

IMAGE_ONLY_PLACEHOLDER = "[No text. Pass this as 'Good' unless you see a suspicious image]"

ALLOWED_TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.CREATED: frozenset({JobState.SUBMITTED}),
    JobState.SUBMITTED: frozenset({JobState.QUEUED, JobState.RUNNING, JobState.COMPLETED, JobState.FAILED, JobState.EXPIRED}),
    JobState.QUEUED: frozenset({JobState.QUEUED, JobState.RUNNING, JobState.COMPLETED, JobState.FAILED, JobState.EXPIRED}),
    JobState.RUNNING: frozenset({JobState.RUNNING, JobState.COMPLETED, JobState.FAILED, JobState.EXPIRED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.EXPIRED: frozenset(),
}


@dataclass(slots=True)
class ClassificationJob:
    """Mutable record of one job moving through its lifecycle."""

    request: ClassificationRequest
    state: JobState = JobState.CREATED
    job_id: str | None = None
    output_text: str | None = None
    error: str | None = None
    polls: int = 0

    def advance(self, new_state: JobState) -> None:
        """Move to ``new_state``.

        Raises:
            ClassificationError: If the transition is not part of the lifecycle.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ClassificationError(f"Invalid job transition {self.state} -> {new_state}")
        self.state = new_state

    def apply(self, snapshot: JobSnapshot) -> None:
        self.advance(snapshot.state)
        self.output_text = snapshot.output_text
        self.error = snapshot.error


class ChatTitleSource(Protocol):
    async def get_chat_title(self, chat_id: ChatID) -> str:
        ...


class ClassificationEngine:
    """
    Builds classification requests, runs them as polled jobs and parses verdicts.

    Args:
        client: Judgement service client.
        model_policy: Chooses the model per chat and the retry model.
        title_source: Optional lookup for chat titles, used when the message
            does not carry one. Titles are cached.
        poll_interval: Seconds between polls of a running job.
        instructions: Fixed system instruction, chat rules are appended to it.
        sleep: Coroutine used to wait between polls, injectable for tests.
    """

    def __init__(
        self,
        client: JudgementClient,
        model_policy: ModelSelectionPolicy | None = None,
        title_source: ChatTitleSource | None = None,
        poll_interval: float = 1.0,
        instructions: str = DEFAULT_INSTRUCTIONS,
        title_cache_seconds: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._model_policy = model_policy or ConfiguredModelPolicy()
        self._title_source = title_source
        self._poll_interval = poll_interval
        self._instructions = instructions or DEFAULT_INSTRUCTIONS
        self._titles: TTLCache[ChatID, str] = TTLCache(title_cache_seconds)
        self._sleep = sleep

    # --------------------------
    # Request building
    # --------------------------
    async def _chat_title(self, message: ModerationMessage) -> str | None:
        if message.chat_title:
            return message.chat_title
        cached = self._titles.get(message.chat_id)
        if cached is not None or self._title_source is None:
            return cached
        try:
            title = await self._title_source.get_chat_title(message.chat_id)
        except PlatformError as exc:
            logger.debug("[CLASSIFICATION] Could not fetch title of chat %s: %s", message.chat_id, exc)
            return None
        self._titles.set(message.chat_id, title)
        return title

    def build_instructions(self, chat_title: str | None, config: ChatModerationConfig) -> str:
        parts = [self._instructions]
        if chat_title:
            parts.append(f"The chat is called {chat_title!r}.")
        parts.append(f"Admins have set these rules:\n\n{config.prompt}")
        return "\n\n".join(parts)

    # --------------------------
    # Job lifecycle
    # --------------------------
    async def run_job(self, request: ClassificationRequest) -> ClassificationJob:
        """
        Submit a request and poll it until it reaches a terminal state.

        Client exceptions propagate to the caller; invalid transitions raise
        ClassificationError.
        """
        job = ClassificationJob(request)
        job.job_id = await self._client.submit(request)
        job.advance(JobState.SUBMITTED)

        while not job.state.is_terminal:
            snapshot = await self._client.poll(job.job_id)
            job.polls += 1
            job.apply(snapshot)
            if not job.state.is_terminal:
                await self._sleep(self._poll_interval)

        logger.debug("[CLASSIFICATION] Job %s finished as %s after %d polls", job.job_id, job.state, job.polls)
        return job

    async def _classify_with_model(self, request: ClassificationRequest) -> tuple[ModerationJudgement, str]:
        try:
            job = await self.run_job(request)
        except ClassificationError:
            raise
        except Exception as exc:
            raise ClassificationError(f"Judgement service call failed: {exc}") from exc

        if job.state is not JobState.COMPLETED:
            raise ClassificationError(f"Job {job.job_id} ended as {job.state}: {job.error or 'no details'}")
        if not job.output_text:
            raise ClassificationError(f"Job {job.job_id} completed without output")
        return parse_verdict_payload(job.output_text)

    # --------------------------
    # Public API
    # --------------------------
    async def classify(
        self, message: ModerationMessage, chat_config: ChatModerationConfig
    ) -> ModerationVerdict | None:
        """
        Classify one message for a chat.

        Never raises for service failures: they yield a Good verdict without
        reasoning.

        Returns:
            ModerationVerdict | None: None when the message has nothing to
            judge (system events, empty bodies).
        """
        text = message.text.strip()

        if message.kind is MessageKind.SYSTEM:
            return None
        if not text and message.image is None:
            return None
        if is_command(text):
            return ModerationVerdict(ModerationJudgement.GOOD, "Commands are not moderated", text, message.image)
        if message.is_forwarded_story and chat_config.block_forwarded_stories:
            return ModerationVerdict(
                ModerationJudgement.SUSPICIOUS, "Forwarded stories are not allowed in this chat", text, message.image
            )

        instructions = self.build_instructions(await self._chat_title(message), chat_config)
        model = self._model_policy.select(message.chat_id, chat_config.model)

        while model is not None:
            request = ClassificationRequest(
                model=model,
                instructions=instructions,
                message_text=text or IMAGE_ONLY_PLACEHOLDER,
                image=message.image,
            )
            try:
                judgement, reasoning = await self._classify_with_model(request)
            except ClassificationError as exc:
                retry_model = self._model_policy.fallback(model)
                logger.warning(
                    "[CLASSIFICATION] Model %s failed for message %s in chat %s: %s%s",
                    model, message.message_id, message.chat_id, exc,
                    f"; retrying with {retry_model}" if retry_model else "",
                )
                model = retry_model
                continue

            logger.info(
                "[CLASSIFICATION] Message %s in chat %s judged %s", message.message_id, message.chat_id, judgement
            )
            return ModerationVerdict(judgement, reasoning, text, message.image)

        logger.error("[CLASSIFICATION] Failing open for message %s in chat %s", message.message_id, message.chat_id)
        return ModerationVerdict.fail_open(text, message.image)
