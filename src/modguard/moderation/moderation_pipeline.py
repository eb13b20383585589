"""
Per-message moderation flow.

Every inbound message is handled by its own asyncio task::

    flood guard -> config + scrutiny gate -> fast signals (blocklist, flood, emoji)
        -> classification -> policy resolver -> enforcement executor

Fast signals are enforced without waiting for the classifier. System events
(joins, pins) bypass all of it; they are only recorded for ban cleanup and,
when the chat asks for it, join and leave messages are deleted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Set

from modguard.ai.classification_engine import ClassificationEngine
from modguard.datatypes.chat_config import ChatModerationConfig
from modguard.datatypes.moderation_datatypes import (
    EnforcementOutcome,
    EnforcementTarget,
    MessageKind,
    ModerationMessage,
    ModerationVerdict,
    ResolvedAction,
)
from modguard.moderation import policy_resolver
from modguard.moderation.enforcement_executor import EnforcementContext, EnforcementExecutor
from modguard.moderation.flood_guard import FloodGuard
from modguard.moderation.scrutiny import ScrutinyContext, ScrutinyDecision, decide_scrutiny
from modguard.settings.chat_config_store import ChatConfigStore
from modguard.util.logger import get_logger

logger = get_logger("moderation_pipeline")


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """What happened to one message. Mostly useful for tests and debugging."""

    is_flood: bool
    decision: ScrutinyDecision | None = None
    verdict: ModerationVerdict | None = None
    action: ResolvedAction | None = None
    outcome: EnforcementOutcome | None = None


class ModerationPipeline:
    """
    Wires the flood guard, classifier, resolver and executor together.

    Args:
        flood_guard: Shared flood guard.
        engine: Classification engine.
        executor: Enforcement executor.
        config_store: Source of chat configs and per-user message counters.
        default_config: Config used for chats with nothing stored. When None,
            such chats are not moderated.
    """

    def __init__(
        self,
        flood_guard: FloodGuard,
        engine: ClassificationEngine,
        executor: EnforcementExecutor,
        config_store: ChatConfigStore,
        default_config: ChatModerationConfig | None = None,
    ) -> None:
        self.flood_guard = flood_guard
        self.engine = engine
        self.executor = executor
        self.config_store = config_store
        self.default_config = default_config
        self._tasks: Set[asyncio.Task] = set()

    async def _enforce(
        self,
        action: ResolvedAction,
        message: ModerationMessage,
        config: ChatModerationConfig,
        verdict: ModerationVerdict | None,
    ) -> EnforcementOutcome:
        context = EnforcementContext(message=message, config=config, verdict=verdict)
        return await self.executor.execute(action, message.chat_id, EnforcementTarget.from_message(message), context)

    async def _load_config(self, message: ModerationMessage) -> ChatModerationConfig | None:
        return await self.config_store.get(message.chat_id) or self.default_config

    async def handle_system_event(self, message: ModerationMessage) -> PipelineResult:
        """
        Handle joins, pins and other system messages.

        They are never rate limited, classified or counted towards the
        user's first messages; join and leave messages are removed when the
        chat asks for it.
        """
        self.flood_guard.record_message(message.chat_id, message.user_id, message.message_id)

        config = await self._load_config(message)
        if config is None or not config.enabled:
            return PipelineResult(is_flood=False)
        if not (message.is_join_or_leave and config.delete_join_leave_messages):
            return PipelineResult(is_flood=False)

        logger.debug("[PIPELINE] Deleting join/leave message %s in %s", message.message_id, message.chat_id)
        outcome = await self.executor.delete(message.chat_id, message.message_id)
        if not outcome.succeeded:
            logger.warning(
                "[PIPELINE] Failed to delete join/leave message %s in %s: %s",
                message.message_id, message.chat_id, outcome.message,
            )
        return PipelineResult(is_flood=False, outcome=outcome)

    async def handle_message(self, message: ModerationMessage) -> PipelineResult:
        """Moderate one message from start to finish."""
        if message.kind is MessageKind.SYSTEM:
            return await self.handle_system_event(message)

        # Runs for every member message so the ban-cleanup ledger stays complete
        is_flood = self.flood_guard.check(message.chat_id, message.user_id, message.text, message.message_id)

        config = await self._load_config(message)
        if config is None:
            return PipelineResult(is_flood=is_flood)

        messages_seen = await self.config_store.get_and_increment_messages_seen(message.chat_id, message.user_id)
        decision = decide_scrutiny(config, ScrutinyContext(message.sender_is_admin, messages_seen))
        if not decision.moderates:
            logger.debug("[PIPELINE] Skipping message %s in %s: %s", message.message_id, message.chat_id, decision)
            return PipelineResult(is_flood=is_flood, decision=decision)

        fast_action = policy_resolver.resolve(None, is_flood, config, message)
        if not fast_action.is_allow:
            outcome = await self._enforce(fast_action, message, config, None)
            return PipelineResult(is_flood, decision, None, fast_action, outcome)

        if decision is not ScrutinyDecision.CLASSIFY:
            return PipelineResult(is_flood, decision, None, fast_action)

        verdict = await self.engine.classify(message, config)
        action = policy_resolver.resolve(verdict, is_flood, config, message)
        outcome = await self._enforce(action, message, config, verdict)
        return PipelineResult(is_flood, decision, verdict, action, outcome)

    async def _run(self, message: ModerationMessage) -> PipelineResult | None:
        try:
            return await self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[PIPELINE] Failed to moderate message %s in %s", message.message_id, message.chat_id)
            return None

    def submit(self, message: ModerationMessage) -> asyncio.Task:
        """Schedule a message for moderation without waiting for the result."""
        task = asyncio.create_task(self._run(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        """Number of messages still being moderated."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Wait for in-flight messages, then stop the executor's background work."""
        if self.pending:
            logger.info("[PIPELINE] Waiting for %d in-flight messages", self.pending)
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.executor.shutdown()
