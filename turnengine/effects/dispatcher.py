"""Side-effect dispatcher — detached post-turn work.

Everything here runs after the caller already has its response. Each
effect is its own task; failures are logged and recorded as
``SideEffectResult``s and never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from turnengine.conversations.models import ROLE_ASSISTANT, ROLE_USER, Message
from turnengine.conversations.summarizer import summary_due
from turnengine.quota.models import FEATURE_CHAT_TURNS, FEATURE_IMAGE_GENERATION
from turnengine.tools.images import mark_failed

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from turnengine.conversations.models import Conversation
    from turnengine.conversations.store import ConversationStore
    from turnengine.conversations.summarizer import ConversationSummarizer
    from turnengine.effects.broadcast import BroadcastHub
    from turnengine.effects.speech import SpeechSynthesizer
    from turnengine.memory.ranker import MemoryRanker
    from turnengine.quota.guard import QuotaGuard
    from turnengine.tools.images import ImageGenerator

logger = logging.getLogger(__name__)

CHATTYPE_VOICE = "voice"
RESULT_HISTORY = 500


@dataclass
class SideEffectResult:
    name: str
    conversation_id: str
    ok: bool
    error: str | None = None
    elapsed_ms: int = 0


@dataclass
class TurnEffects:
    """What a finished turn hands to the dispatcher."""

    conversation: Conversation
    user_text: str
    assistant_text: str
    mode: str = "chat"
    chattype: str = "text"
    voice: str | None = None
    client_msg_id: str | None = None
    features: list[str] = field(default_factory=lambda: [FEATURE_CHAT_TURNS])
    memory_ids: list[str] = field(default_factory=list)
    assistant_metadata: dict[str, Any] = field(default_factory=dict)
    image_placeholder: Message | None = None
    count_turn: bool = True

    @property
    def is_voice(self) -> bool:
        return self.chattype == CHATTYPE_VOICE

    @property
    def stores_user_message(self) -> bool:
        """Voice turns, and text turns the client did not store, write the user side."""
        return self.is_voice or self.client_msg_id is None


class BackgroundDispatcher:
    """Runs post-turn effects as detached asyncio tasks.

    Holds strong references to running tasks so they are not garbage
    collected mid-flight; ``wait_idle`` drains them on shutdown and in tests.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        quota: QuotaGuard,
        ranker: MemoryRanker,
        summarizer: ConversationSummarizer,
        broadcast: BroadcastHub,
        *,
        speech: SpeechSynthesizer | None = None,
        images: ImageGenerator | None = None,
        summary_interval: int = 12,
    ) -> None:
        self._conversations = conversations
        self._quota = quota
        self._ranker = ranker
        self._summarizer = summarizer
        self._broadcast = broadcast
        self._speech = speech
        self._images = images
        self._summary_interval = summary_interval
        self._tasks: set[asyncio.Task[SideEffectResult]] = set()
        self.results: deque[SideEffectResult] = deque(maxlen=RESULT_HISTORY)

    # -- Task plumbing ---------------------------------------------------------

    def spawn(
        self, name: str, conversation_id: str, coro: Coroutine[Any, Any, Any]
    ) -> asyncio.Task[SideEffectResult]:
        task = asyncio.create_task(self._run(name, conversation_id, coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, name: str, conversation_id: str, coro: Coroutine[Any, Any, Any]
    ) -> SideEffectResult:
        t0 = time.monotonic()
        try:
            await coro
        except Exception as exc:
            logger.exception("Side effect %s failed for %s", name, conversation_id)
            result = SideEffectResult(name, conversation_id, ok=False, error=str(exc))
        else:
            result = SideEffectResult(name, conversation_id, ok=True)
        result.elapsed_ms = int((time.monotonic() - t0) * 1000)
        self.results.append(result)
        return result

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until no tasks are running, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Dispatch --------------------------------------------------------------

    def dispatch_turn(self, effects: TurnEffects) -> Message:
        """Schedule every effect of a finished turn.

        Returns the assistant message that will be stored, so the caller
        can reference its id right away.
        """
        conversation = effects.conversation
        assistant = Message(
            conversation_id=conversation.id,
            owner_id=conversation.owner_id,
            role=ROLE_ASSISTANT,
            text=effects.assistant_text,
            mode=effects.mode,
            metadata=effects.assistant_metadata,
        )
        cid = conversation.id

        persisted = self.spawn("persist", cid, self._persist(effects, assistant))
        if effects.is_voice and self._speech is not None:
            self.spawn("speech", cid, self._synthesize(effects, assistant))
        if effects.image_placeholder is not None:
            self.spawn("image", cid, self._generate_image(effects.image_placeholder))
        if effects.count_turn:
            self.spawn("turn", cid, self._advance_turn(conversation, persisted))
        for feature in effects.features:
            self.spawn(f"usage:{feature}", cid, self._increment(conversation.owner_id, feature))
        if effects.memory_ids:
            self.spawn("memory", cid, self._ranker.record_usage(effects.memory_ids))
        return assistant

    async def _persist(self, effects: TurnEffects, assistant: Message) -> None:
        if effects.stores_user_message:
            user = Message(
                conversation_id=effects.conversation.id,
                owner_id=effects.conversation.owner_id,
                role=ROLE_USER,
                text=effects.user_text,
                mode=effects.mode,
                created_at=_just_before(assistant.created_at),
            )
            inserted = await self._conversations.insert_messages([user, assistant])
        else:
            inserted = [await self._conversations.insert_message(assistant)]
        for message in inserted:
            self._broadcast.publish(message.owner_id, message.to_event())

    async def _synthesize(self, effects: TurnEffects, assistant: Message) -> None:
        path = await self._speech.synthesize(assistant.text, assistant.id, effects.voice)
        if path is None:
            return
        self._broadcast.publish(assistant.owner_id, {
            "type": "audio",
            "conversation_id": assistant.conversation_id,
            "message_id": assistant.id,
            "path": path,
        })

    async def _generate_image(self, placeholder: Message) -> None:
        if self._images is None:
            msg = "Image generation is not configured"
            await self._conversations.insert_message(placeholder)
            await mark_failed(placeholder, self._conversations, self._broadcast, msg)
            raise RuntimeError(msg)
        await self._images.fulfil(placeholder, self._conversations, self._broadcast)

    async def _advance_turn(
        self, conversation: Conversation, persisted: asyncio.Task[SideEffectResult]
    ) -> None:
        counts = await self._conversations.increment_turn(conversation.id)
        if counts is None:
            logger.warning("Conversation %s vanished before its turn was counted", conversation.id)
            return
        turn_count, last_summary_at = counts
        if not summary_due(turn_count, last_summary_at, self._summary_interval):
            return
        if not await self._conversations.claim_summary_checkpoint(conversation.id, turn_count):
            return
        logger.info(
            "Summary due for %s (turns %d-%d)", conversation.id, last_summary_at + 1, turn_count
        )
        # the summary window must include this turn's own messages
        await persisted
        self.spawn(
            "summary",
            conversation.id,
            self._summarizer.summarize(conversation.id, last_summary_at + 1, turn_count),
        )

    async def _increment(self, owner_id: str, feature: str) -> None:
        result = await self._quota.increment_usage(owner_id, feature)
        if not result.success:
            msg = f"Usage increment failed for {feature}: {result.reason}"
            raise RuntimeError(msg)


def _just_before(iso_timestamp: str) -> str:
    """Shift an ISO timestamp back by one microsecond so ordering is stable."""
    return (datetime.fromisoformat(iso_timestamp) - timedelta(microseconds=1)).isoformat()


def features_for(image_dispatched: bool) -> list[str]:
    features = [FEATURE_CHAT_TURNS]
    if image_dispatched:
        features.append(FEATURE_IMAGE_GENERATION)
    return features
