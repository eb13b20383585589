"""
Pytest configuration and shared fakes for Modguard tests.
"""

import itertools
import json
import sys
from pathlib import Path

# Add src directory to path so imports work without installing the package
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import pytest

from modguard.ai.judgement_client import ClassificationRequest, JobSnapshot, JobState
from modguard.datatypes.chat_datatypes import ChatID, MessageID, UserID
from modguard.datatypes.moderation_datatypes import MessageKind, ModerationMessage
from modguard.errors import PlatformError
from modguard.platform.chat_platform import BotPermissions


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChatPlatform:
    """In-memory chat platform that records every call."""

    max_batch_delete = 100

    def __init__(self) -> None:
        self.permissions = BotPermissions(can_delete_messages=True, can_restrict_members=True, can_ban_members=True)
        self.calls: list[tuple] = []
        self.sent: list[tuple] = []
        self.errors: dict[str, PlatformError] = {}
        self.banned: set = set()
        self.title = "Test Chat"
        self._ids = itertools.count(90_000)

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def calls_named(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    @property
    def enforcement_calls(self) -> list[tuple]:
        passive = {"get_bot_permissions", "get_chat_title", "send_message"}
        return [call for call in self.calls if call[0] not in passive]

    async def get_bot_permissions(self, chat_id):
        self._record("get_bot_permissions", chat_id)
        return self.permissions

    async def get_chat_title(self, chat_id):
        self._record("get_chat_title", chat_id)
        return self.title

    async def delete_message(self, chat_id, message_id):
        self._record("delete_message", chat_id, message_id)

    async def delete_messages(self, chat_id, message_ids):
        assert len(message_ids) <= self.max_batch_delete
        self._record("delete_messages", chat_id, list(message_ids))

    async def restrict_member(self, chat_id, user_id, until=None):
        self._record("restrict_member", chat_id, user_id, until)

    async def unrestrict_member(self, chat_id, user_id):
        self._record("unrestrict_member", chat_id, user_id)

    async def ban_member(self, chat_id, user_id):
        self._record("ban_member", chat_id, user_id)
        if (chat_id, user_id) in self.banned:
            raise PlatformError("Bad Request: user is already banned")
        self.banned.add((chat_id, user_id))

    async def unban_member(self, chat_id, user_id):
        self._record("unban_member", chat_id, user_id)
        self.banned.discard((chat_id, user_id))

    async def ban_sender_chat(self, chat_id, sender_chat_id):
        self._record("ban_sender_chat", chat_id, sender_chat_id)

    async def unban_sender_chat(self, chat_id, sender_chat_id):
        self._record("unban_sender_chat", chat_id, sender_chat_id)

    async def send_message(self, chat_id, text, review=None):
        self._record("send_message", chat_id)
        self.sent.append((chat_id, text, review))
        return MessageID(next(self._ids))


class FakeJudgementClient:
    """
    Scripted judgement service.

    ``script`` lists the snapshots returned by successive polls; the last one
    repeats. Models listed in ``failing_models`` raise on submit.
    """

    def __init__(self, script=None, failing_models=(), poll_error: Exception | None = None) -> None:
        self.script = list(script or [])
        self.failing_models = set(failing_models)
        self.poll_error = poll_error
        self.submitted: list[ClassificationRequest] = []
        self.polls = 0

    async def submit(self, request: ClassificationRequest) -> str:
        self.submitted.append(request)
        if request.model in self.failing_models:
            raise RuntimeError(f"model {request.model} is unavailable")
        return f"job-{len(self.submitted)}"

    async def poll(self, job_id: str) -> JobSnapshot:
        if self.poll_error is not None:
            raise self.poll_error
        snapshot = self.script[min(self.polls, len(self.script) - 1)]
        self.polls += 1
        return snapshot


def verdict_json(judgement: str, reasoning: str = "") -> str:
    return json.dumps({"judgement": judgement, "reasoning": reasoning})


def completed(judgement: str, reasoning: str = "") -> JobSnapshot:
    return JobSnapshot(JobState.COMPLETED, output_text=verdict_json(judgement, reasoning))


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def platform() -> FakeChatPlatform:
    return FakeChatPlatform()


@pytest.fixture
def make_message():
    """Factory for moderation messages with sensible defaults and fresh ids."""
    ids = itertools.count(1)

    def factory(text: str = "hello", chat_id: int = -100, user_id: int = 42, **overrides) -> ModerationMessage:
        fields = dict(
            chat_id=ChatID(chat_id),
            message_id=MessageID(next(ids)),
            user_id=UserID(user_id),
            sender_name=f"@user{user_id}",
            text=text,
            kind=MessageKind.TEXT,
        )
        fields.update(overrides)
        return ModerationMessage(**fields)

    return factory
