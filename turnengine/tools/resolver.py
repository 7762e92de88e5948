"""Tool-call resolver — single-hop tool handling around the model call.

States::

    AWAITING_MODEL -> TEXT_ONLY -------------------------------> FINALIZED
                   -> TOOL_REQUESTED -> RESOLVING_TOOL
                                      -> AWAITING_MODEL_2 -----> FINALIZED  (entity lookup)
                                      ------------------------> FINALIZED  (image)

A tool request found in the second response is logged and returned as
``unresolved_request``; it is never resolved in turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import ValidationError

from turnengine.conversations.models import ROLE_USER
from turnengine.errors import UpstreamError
from turnengine.llm.client import Usage
from turnengine.llm.context import ContextTurn
from turnengine.quota.guard import decline_message
from turnengine.quota.models import FEATURE_IMAGE_GENERATION
from turnengine.tools.entities import fetch_entities, format_grounding_block
from turnengine.tools.images import make_placeholder
from turnengine.tools.registry import (
    FETCH_DOCUMENTS,
    GENERATE_IMAGE,
    FetchEntitiesParams,
    GenerateImageParams,
)
from turnengine.tools.requests import (
    NO_REQUEST,
    InlineRequest,
    NoRequest,
    StructuredRequest,
    ToolRequest,
    parse_tool_request,
    strip_tool_markup,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from turnengine.conversations.models import Conversation, Message
    from turnengine.llm.client import ModelInvoker, ModelReply
    from turnengine.llm.context import AssembledContext
    from turnengine.quota.guard import QuotaGuard
    from turnengine.tools.entities import Entity, EntityStore

logger = logging.getLogger(__name__)

IMAGE_ACK = "On it! Your image is being generated and will appear here shortly."
LOOKUP_FALLBACK = "I couldn't load the material needed to answer that. Could you share it again?"
IMAGE_UNAVAILABLE = "Image generation isn't available right now."
LOOKUP_INSTRUCTION = (
    "Here is the material you requested. Use it to answer my previous message. "
    "Do not request it again."
)


class ResolverState(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    TEXT_ONLY = "text_only"
    TOOL_REQUESTED = "tool_requested"
    RESOLVING_TOOL = "resolving_tool"
    AWAITING_MODEL_2 = "awaiting_model_2"
    FINALIZED = "finalized"


@dataclass
class Resolution:
    """Finalized outcome of the model phase of a turn."""

    text: str
    usage: Usage = field(default_factory=Usage)
    llm_latency_ms: int = 0
    invocations: int = 0
    path: list[ResolverState] = field(default_factory=list)
    request: ToolRequest = NO_REQUEST
    entities: list[Entity] = field(default_factory=list)
    image_placeholder: Message | None = None
    image_declined: bool = False
    unresolved_request: ToolRequest | None = None


class ToolCallResolver:
    def __init__(
        self,
        invoker: ModelInvoker,
        quota: QuotaGuard,
        entity_stores: Sequence[EntityStore],
        *,
        images_enabled: bool = True,
    ) -> None:
        self._invoker = invoker
        self._quota = quota
        self._entity_stores = list(entity_stores)
        self._images_enabled = images_enabled

    async def resolve(
        self, context: AssembledContext, conversation: Conversation, *, mode: str = "chat"
    ) -> Resolution:
        """Invoke the model, resolve at most one tool request, and finalize.

        Raises ``UpstreamError`` / ``UpstreamTimeout`` from the invoker, and
        ``UpstreamError`` when the model produced no usable text at all.
        """
        result = Resolution(text="", path=[ResolverState.AWAITING_MODEL])
        reply = await self._invoke(result, context)

        request = parse_tool_request(reply)
        result.request = request
        if isinstance(request, NoRequest):
            result.path.append(ResolverState.TEXT_ONLY)
            return self._finalize(result, reply.text)

        result.path.append(ResolverState.TOOL_REQUESTED)
        logger.info("Tool requested in %s: %s", conversation.id, _describe(request))

        if isinstance(request, InlineRequest) or request.name == FETCH_DOCUMENTS:
            return await self._resolve_lookup(result, context, conversation, request)
        if request.name == GENERATE_IMAGE:
            return await self._resolve_image(result, context, conversation, request, reply, mode)

        logger.warning("Model requested unknown tool %r", request.name)
        result.unresolved_request = request
        return self._finalize(result, reply.text)

    async def _invoke(
        self, result: Resolution, context: AssembledContext, tools_enabled: bool | None = None
    ) -> ModelReply:
        reply = await self._invoker.invoke(context, tools_enabled)
        result.invocations += 1
        result.usage = result.usage + reply.usage
        result.llm_latency_ms += reply.latency_ms
        return reply

    def _finalize(self, result: Resolution, raw_text: str, fallback: str = "") -> Resolution:
        text = strip_tool_markup(raw_text) or fallback
        if not text:
            msg = "Model returned an empty response"
            raise UpstreamError(msg)
        result.text = text
        result.path.append(ResolverState.FINALIZED)
        return result

    # -- Entity lookup ---------------------------------------------------------

    @staticmethod
    def _lookup_ids(request: InlineRequest | StructuredRequest) -> list[str]:
        if isinstance(request, InlineRequest):
            return list(request.ids)
        try:
            params = FetchEntitiesParams.model_validate(request.args)
        except ValidationError as exc:
            logger.warning("Invalid %s arguments: %s", request.name, exc)
            return []
        return list(dict.fromkeys(params.ids))

    async def _resolve_lookup(
        self,
        result: Resolution,
        context: AssembledContext,
        conversation: Conversation,
        request: InlineRequest | StructuredRequest,
    ) -> Resolution:
        result.path.append(ResolverState.RESOLVING_TOOL)
        ids = self._lookup_ids(request)
        outcome = await fetch_entities(self._entity_stores, ids, conversation.owner_id)
        result.entities = outcome.entities
        logger.info(
            "Loaded %d of %d entities for %s (failed stores: %s)",
            len(outcome.entities),
            len(ids),
            conversation.id,
            ", ".join(outcome.failed_stores) or "none",
        )

        follow_up = context.with_turn(ContextTurn(
            ROLE_USER, f"{LOOKUP_INSTRUCTION}\n\n{format_grounding_block(outcome)}"
        ))
        result.path.append(ResolverState.AWAITING_MODEL_2)
        reply = await self._invoke(result, follow_up, tools_enabled=False)

        nested = parse_tool_request(reply)
        if not isinstance(nested, NoRequest):
            logger.warning(
                "Nested tool request left unresolved in %s: %s", conversation.id, _describe(nested)
            )
            result.unresolved_request = nested
            return self._finalize(result, reply.text, fallback=LOOKUP_FALLBACK)
        return self._finalize(result, reply.text)

    # -- Image generation ------------------------------------------------------

    async def _resolve_image(
        self,
        result: Resolution,
        context: AssembledContext,
        conversation: Conversation,
        request: StructuredRequest,
        reply: ModelReply,
        mode: str,
    ) -> Resolution:
        result.path.append(ResolverState.RESOLVING_TOOL)
        if not self._images_enabled:
            logger.warning("Image requested in %s but no generator is configured", conversation.id)
            result.unresolved_request = request
            return self._finalize(result, reply.text, fallback=IMAGE_UNAVAILABLE)

        try:
            prompt = GenerateImageParams.model_validate(request.args).prompt
        except ValidationError:
            # fall back to the user's own words
            prompt = context.turns[-1].text

        check = await self._quota.check_limit(conversation.owner_id, FEATURE_IMAGE_GENERATION)
        if not check.allowed:
            logger.info("Image generation declined for %s: %s", conversation.owner_id, check.reason)
            result.image_declined = True
            return self._finalize(result, decline_message(FEATURE_IMAGE_GENERATION, check))

        result.image_placeholder = make_placeholder(
            conversation.id, conversation.owner_id, prompt, mode
        )
        return self._finalize(result, reply.text, fallback=IMAGE_ACK)


def _describe(request: ToolRequest) -> str:
    if isinstance(request, InlineRequest):
        return f"inline ids={list(request.ids)}"
    if isinstance(request, StructuredRequest):
        return f"{request.name}({request.args})"
    return "none"
