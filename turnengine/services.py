"""ServiceBundle — every long-lived collaborator, built once per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anthropic
from openai import AsyncOpenAI

from turnengine.artifacts import ArtifactStore
from turnengine.conversations.store import ConversationStore
from turnengine.conversations.summarizer import ConversationSummarizer
from turnengine.effects.broadcast import BroadcastHub
from turnengine.effects.dispatcher import BackgroundDispatcher
from turnengine.effects.speech import SpeechSynthesizer
from turnengine.llm.cache import ContextCache
from turnengine.llm.client import ModelInvoker
from turnengine.llm.prompt import load_base_rules
from turnengine.memory.ranker import MemoryRanker
from turnengine.memory.store import MemoryFactStore
from turnengine.orchestrator import TurnOrchestrator
from turnengine.quota.guard import QuotaGuard
from turnengine.quota.store import UsageStore
from turnengine.tools.entities import (
    TYPE_DOCUMENT,
    TYPE_NOTE,
    TYPE_REPORT,
    TableEntityStore,
    TranscriptEntityStore,
)
from turnengine.tools.images import ImageGenerator
from turnengine.tools.registry import default_registry
from turnengine.tools.resolver import ToolCallResolver

if TYPE_CHECKING:
    from turnengine.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceBundle:
    """Process-scoped services. Handlers receive this instead of globals."""

    conversations: ConversationStore
    usage: UsageStore
    memory: MemoryFactStore
    entity_stores: dict[str, TableEntityStore]
    quota: QuotaGuard
    cache: ContextCache
    ranker: MemoryRanker
    invoker: ModelInvoker
    resolver: ToolCallResolver
    broadcast: BroadcastHub
    artifacts: ArtifactStore
    dispatcher: BackgroundDispatcher
    orchestrator: TurnOrchestrator
    anthropic_client: anthropic.AsyncAnthropic
    openai_client: AsyncOpenAI | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ServiceBundle:
        db_path = settings.database_path
        conversations = ConversationStore(db_path)
        usage = UsageStore(db_path)
        memory = MemoryFactStore(db_path)
        entity_stores = {
            t: TableEntityStore(db_path, t) for t in (TYPE_DOCUMENT, TYPE_NOTE, TYPE_REPORT)
        }
        artifacts = ArtifactStore(settings.artifact_dir)
        broadcast = BroadcastHub()

        quota = QuotaGuard(usage, settings.get_plan_limits())
        cache = ContextCache(
            db_path,
            ttl_seconds=settings.context_cache_ttl_seconds,
            paid_plans=settings.get_paid_plans(),
        )
        ranker = MemoryRanker(
            memory,
            conversations,
            fetch_limit=settings.memory_fetch_limit,
            top_k=settings.memory_top_k,
            cache_ttl_seconds=settings.memory_cache_ttl_seconds,
        )

        openai_client: AsyncOpenAI | None = None
        speech: SpeechSynthesizer | None = None
        images: ImageGenerator | None = None
        if settings.openai_api_key:
            openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
            speech = SpeechSynthesizer(
                openai_client,
                artifacts,
                model=settings.speech_model,
                default_voice=settings.speech_default_voice,
            )
            images = ImageGenerator(
                openai_client,
                artifacts,
                model=settings.image_model,
                size=settings.image_size,
                quality=settings.image_quality,
            )
        else:
            logger.warning("OPENAI_API_KEY not set; speech and image generation disabled")

        anthropic_client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key, max_retries=0
        )
        invoker = ModelInvoker(
            anthropic_client,
            default_registry(images=images is not None),
            model=settings.chat_model,
            summary_model=settings.summary_model,
            max_tokens=settings.chat_max_tokens,
            temperature=settings.chat_temperature,
            timeout_seconds=settings.model_timeout_seconds,
        )
        resolver = ToolCallResolver(
            invoker,
            quota,
            [*entity_stores.values(), TranscriptEntityStore(conversations)],
            images_enabled=images is not None,
        )

        dispatcher = BackgroundDispatcher(
            conversations,
            quota,
            ranker,
            ConversationSummarizer(conversations, invoker),
            broadcast,
            speech=speech,
            images=images,
            summary_interval=settings.summary_interval,
        )
        orchestrator = TurnOrchestrator(
            conversations=conversations,
            quota=quota,
            cache=cache,
            ranker=ranker,
            resolver=resolver,
            dispatcher=dispatcher,
            base_rules=load_base_rules(settings.base_rules_path),
            history_limit=settings.history_limit,
        )
        return cls(
            conversations=conversations,
            usage=usage,
            memory=memory,
            entity_stores=entity_stores,
            quota=quota,
            cache=cache,
            ranker=ranker,
            invoker=invoker,
            resolver=resolver,
            broadcast=broadcast,
            artifacts=artifacts,
            dispatcher=dispatcher,
            orchestrator=orchestrator,
            anthropic_client=anthropic_client,
            openai_client=openai_client,
        )

    async def aclose(self) -> None:
        """Drain background work, then close the HTTP clients."""
        pending = self.dispatcher.pending
        if pending:
            logger.info("Waiting for %d background task(s)", pending)
        await self.dispatcher.wait_idle()
        await self.anthropic_client.close()
        if self.openai_client is not None:
            await self.openai_client.close()
