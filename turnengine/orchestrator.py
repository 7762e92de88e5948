"""Turn orchestrator — one inbound message to one finalized reply.

Critical path: validate -> quota check -> gather context inputs -> assemble
-> model (+ at most one tool hop) -> dispatch side effects -> respond.
Nothing after ``dispatch_turn`` can fail the turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import aiosqlite
from pydantic import BaseModel, Field, ValidationError, field_validator

from turnengine.effects.dispatcher import TurnEffects, features_for
from turnengine.errors import PersistenceError, RequestValidationError, UpstreamError
from turnengine.llm.context import assemble
from turnengine.llm.intent import enabled_capabilities
from turnengine.llm.prompt import build_system_text
from turnengine.quota.guard import decline_message
from turnengine.quota.models import FEATURE_CHAT_TURNS
from turnengine.tools.requests import InlineRequest, NoRequest, StructuredRequest

if TYPE_CHECKING:
    from turnengine.conversations.models import Conversation
    from turnengine.conversations.store import ConversationStore
    from turnengine.effects.dispatcher import BackgroundDispatcher
    from turnengine.llm.cache import ContextCache
    from turnengine.memory.ranker import MemoryRanker
    from turnengine.quota.guard import QuotaGuard
    from turnengine.quota.models import LimitCheckResult
    from turnengine.tools.requests import ToolRequest
    from turnengine.tools.resolver import ToolCallResolver

logger = logging.getLogger(__name__)


class TurnRequest(BaseModel):
    """Inbound turn payload."""

    conversation_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    mode: str = "chat"
    chattype: Literal["text", "voice"] = "text"
    owner_id: str = Field(min_length=1)
    owner_name: str = ""
    voice: str | None = None
    client_msg_id: str | None = None

    @field_validator("text", "conversation_id", "owner_id", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @classmethod
    def parse(cls, payload: Any) -> TurnRequest:
        """Validate *payload*, raising ``RequestValidationError`` on bad input."""
        if not isinstance(payload, dict):
            msg = "Request body must be a JSON object"
            raise RequestValidationError(msg)
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            msg = f"Invalid turn request: {', '.join(fields) or 'body'}"
            raise RequestValidationError(msg, fields) from exc


@dataclass
class TurnResponse:
    text: str
    usage: dict[str, int] = field(default_factory=dict)
    llm_latency_ms: int = 0
    total_latency_ms: int = 0
    quota_exceeded: bool = False
    message_id: str | None = None
    image_message_id: str | None = None
    unresolved_tool: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "usage": self.usage,
            "llm_latency_ms": self.llm_latency_ms,
            "total_latency_ms": self.total_latency_ms,
            "quota_exceeded": self.quota_exceeded,
            "message_id": self.message_id,
            "image_message_id": self.image_message_id,
            "unresolved_tool": self.unresolved_tool,
        }


def _describe_unresolved(request: ToolRequest | None) -> str | None:
    if request is None or isinstance(request, NoRequest):
        return None
    if isinstance(request, InlineRequest):
        return f"request_documents:{','.join(request.ids)}"
    if isinstance(request, StructuredRequest):
        return request.name
    return None


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


class TurnOrchestrator:
    def __init__(
        self,
        *,
        conversations: ConversationStore,
        quota: QuotaGuard,
        cache: ContextCache,
        ranker: MemoryRanker,
        resolver: ToolCallResolver,
        dispatcher: BackgroundDispatcher,
        base_rules: str,
        history_limit: int = 8,
    ) -> None:
        self._conversations = conversations
        self._quota = quota
        self._cache = cache
        self._ranker = ranker
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._base_rules = base_rules
        self._history_limit = history_limit

    async def _load_conversation(self, request: TurnRequest) -> Conversation:
        conversation = await self._conversations.get_conversation(request.conversation_id)
        if conversation is None:
            msg = f"Unknown conversation: {request.conversation_id}"
            raise RequestValidationError(msg, ["conversation_id"])
        if conversation.owner_id != request.owner_id:
            msg = "Conversation does not belong to this owner"
            raise RequestValidationError(msg, ["owner_id"])
        return conversation

    async def handle_turn(self, payload: TurnRequest | dict[str, Any]) -> TurnResponse:
        """Run one turn and return the reply.

        Raises ``RequestValidationError`` for bad input and ``UpstreamError``
        (or ``UpstreamTimeout``) when no reply could be produced. In both
        cases nothing has been persisted for the turn.
        """
        t0 = time.monotonic()
        request = payload if isinstance(payload, TurnRequest) else TurnRequest.parse(payload)

        try:
            conversation = await self._load_conversation(request)
        except aiosqlite.Error as exc:
            msg = "Conversation store unavailable"
            raise UpstreamError(msg) from exc

        check = await self._quota.check_limit(request.owner_id, FEATURE_CHAT_TURNS)
        if not check.allowed:
            return self._decline(request, conversation, check, t0)

        try:
            account, history, summary, grounding, memory = await asyncio.gather(
                self._quota.get_account(request.owner_id),
                self._conversations.recent_history(
                    conversation.id,
                    self._history_limit,
                    exclude_message_id=request.client_msg_id,
                ),
                self._conversations.latest_summary(conversation.id),
                self._conversations.get_grounding_text(conversation.id),
                self._ranker.select(conversation.id),
            )
        except (aiosqlite.Error, PersistenceError) as exc:
            msg = "Failed to load conversation context"
            raise UpstreamError(msg) from exc

        if request.owner_name:
            grounding = f"User name: {request.owner_name}\n\n{grounding}"
        system_text = build_system_text(self._base_rules, grounding, memory.text)
        cache_handle = await self._cache.resolve(conversation.id, system_text, account.plan)
        context = assemble(
            request.text,
            history,
            system_text=system_text,
            summary=summary.summary_text if summary else None,
            cache_handle=cache_handle,
            capabilities=enabled_capabilities(request.text),
            history_limit=self._history_limit,
        )

        resolution = await self._resolver.resolve(context, conversation, mode=request.mode)

        placeholder = resolution.image_placeholder
        assistant = self._dispatcher.dispatch_turn(TurnEffects(
            conversation=conversation,
            user_text=request.text,
            assistant_text=resolution.text,
            mode=request.mode,
            chattype=request.chattype,
            voice=request.voice,
            client_msg_id=request.client_msg_id,
            features=features_for(placeholder is not None),
            memory_ids=memory.ids,
            assistant_metadata={
                "usage": resolution.usage.to_dict(),
                "resolver_path": [str(s) for s in resolution.path],
            },
            image_placeholder=placeholder,
        ))

        response = TurnResponse(
            text=resolution.text,
            usage=resolution.usage.to_dict(),
            llm_latency_ms=resolution.llm_latency_ms,
            total_latency_ms=_elapsed_ms(t0),
            message_id=assistant.id,
            image_message_id=placeholder.id if placeholder else None,
            unresolved_tool=_describe_unresolved(resolution.unresolved_request),
        )
        logger.info(
            "Turn done for %s in %dms (model %dms, calls=%d, cache=%s, tools=%s)",
            conversation.id,
            response.total_latency_ms,
            response.llm_latency_ms,
            resolution.invocations,
            "hit" if cache_handle else "embed",
            ",".join(sorted(context.capabilities)) or "none",
        )
        return response

    def _decline(
        self,
        request: TurnRequest,
        conversation: Conversation,
        check: LimitCheckResult,
        t0: float,
    ) -> TurnResponse:
        text = decline_message(FEATURE_CHAT_TURNS, check)
        logger.info("Turn declined for %s: %s", request.owner_id, check.error_code)
        assistant = self._dispatcher.dispatch_turn(TurnEffects(
            conversation=conversation,
            user_text=request.text,
            assistant_text=text,
            mode=request.mode,
            chattype=request.chattype,
            voice=request.voice,
            client_msg_id=request.client_msg_id,
            features=[],
            assistant_metadata={"quota_exceeded": True, "error_code": check.error_code},
            count_turn=False,
        ))
        return TurnResponse(
            text=text,
            total_latency_ms=_elapsed_ms(t0),
            quota_exceeded=True,
            message_id=assistant.id,
        )
