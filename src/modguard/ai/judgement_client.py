"""
Clients for the external judgement service.

The service runs classification as an asynchronous job: a request is
submitted, the job moves through queued and running states, and eventually
ends completed, failed or expired. :class:`JudgementClient` is the seam the
classification engine talks to; tests inject fakes implementing it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Protocol

from openai import AsyncOpenAI

from modguard.ai.verdict_parsing import VERDICT_SCHEMA
from modguard.datatypes.moderation_datatypes import ModerationImage
from modguard.util.logger import get_logger

logger = get_logger("judgement_client")


class JobState(Enum):
    """Lifecycle of one classification job."""

    CREATED = "created"
    SUBMITTED = "submitted"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.EXPIRED})


@dataclass(frozen=True, slots=True)
class ClassificationRequest:
    """Everything the service needs to judge one message."""

    model: str
    instructions: str
    message_text: str
    image: ModerationImage | None = None


@dataclass(frozen=True, slots=True)
class JobSnapshot:
    """State of a job as reported by one poll."""

    state: JobState
    output_text: str | None = None
    error: str | None = None


class JudgementClient(Protocol):
    async def submit(self, request: ClassificationRequest) -> str:
        """Start a job and return its identifier."""
        ...

    async def poll(self, job_id: str) -> JobSnapshot:
        """Fetch the current state of a job."""
        ...


# Mapping of Responses API statuses onto job states
OPENAI_STATUS_MAP: Dict[str, JobState] = {
    "queued": JobState.QUEUED,
    "in_progress": JobState.RUNNING,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
    "cancelled": JobState.FAILED,
    "incomplete": JobState.EXPIRED,
}


class OpenAIJudgementClient:
    """
    Judgement client backed by the OpenAI Responses API in background mode.

    Works with any OpenAI-compatible endpoint that implements background
    responses and structured JSON output.
    """

    def __init__(self, client: AsyncOpenAI) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, api_key: str | None, base_url: str | None) -> "OpenAIJudgementClient":
        logger.info("[JUDGEMENT CLIENT] Using endpoint %s", base_url or "default")
        return cls(AsyncOpenAI(api_key=api_key, base_url=base_url))

    @staticmethod
    def build_input(request: ClassificationRequest) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = [{"type": "input_text", "text": request.message_text}]
        if request.image is not None:
            content.append({"type": "input_image", "image_url": request.image.url, "detail": "auto"})
        return [{"role": "user", "content": content}]

    async def submit(self, request: ClassificationRequest) -> str:
        response = await self._client.responses.create(
            model=request.model,
            instructions=request.instructions,
            input=self.build_input(request),  # type: ignore[arg-type]
            text={
                "format": {
                    "type": "json_schema",
                    "name": "moderation_verdict",
                    "schema": VERDICT_SCHEMA,
                    "strict": True,
                }
            },
            background=True,
            store=True,
        )
        logger.debug("[JUDGEMENT CLIENT] Submitted job %s (model=%s)", response.id, request.model)
        return response.id

    async def poll(self, job_id: str) -> JobSnapshot:
        response = await self._client.responses.retrieve(job_id)
        state = OPENAI_STATUS_MAP.get(str(response.status), JobState.RUNNING)
        if state is JobState.COMPLETED:
            return JobSnapshot(state, output_text=response.output_text)
        if state in TERMINAL_STATES:
            error = response.error.message if response.error else str(response.status)
            return JobSnapshot(state, error=error)
        return JobSnapshot(state)
