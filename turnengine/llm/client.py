"""Model invoker — one Anthropic Messages call under a hard timeout."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

import anthropic

from turnengine.errors import UpstreamError, UpstreamTimeout

if TYPE_CHECKING:
    from turnengine.llm.context import AssembledContext
    from turnengine.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

TOOL_CHOICE_NONE = {"type": "none"}
TOOL_CHOICE_AUTO = {"type": "auto"}


@dataclass
class Usage:
    """Token accounting for one or more model calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            cache_creation_input_tokens=(
                self.cache_creation_input_tokens + other.cache_creation_input_tokens
            ),
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_response(cls, usage: Any) -> Usage:
        if usage is None:
            return cls()
        return cls(
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            cache_read_input_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
            cache_creation_input_tokens=getattr(usage, "cache_creation_input_tokens", 0) or 0,
        )


@dataclass
class FunctionCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = ""


@dataclass
class ModelReply:
    """Text and/or a structured function call from one invocation."""

    text: str = ""
    function_call: FunctionCall | None = None
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0


class ModelInvoker:
    """Calls the chat model with an assembled context.

    The Anthropic client should be built with ``max_retries=0``: a failed
    or slow call surfaces as ``UpstreamError`` / ``UpstreamTimeout`` and is
    never retried here.
    """

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        registry: ToolRegistry,
        *,
        model: str,
        summary_model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._registry = registry
        self._model = model
        self._summary_model = summary_model or model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout_seconds

    @staticmethod
    def _system_param(context: AssembledContext) -> str | list[dict[str, Any]]:
        if context.cache_handle:
            return [{
                "type": "text",
                "text": context.system_text,
                "cache_control": {"type": "ephemeral"},
            }]
        return context.system_text

    def build_request(
        self, context: AssembledContext, tools_enabled: bool | None = None
    ) -> dict[str, Any]:
        """Keyword arguments for ``messages.create``.

        Registered tool schemas are always attached so the tool-calling mode
        can be stated explicitly: ``auto`` for the capabilities enabled this
        turn, ``none`` otherwise or when no registered tool serves them.
        """
        enabled = context.tools_enabled if tools_enabled is None else tools_enabled
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": self._system_param(context),
            "messages": context.to_messages(),
        }
        offered = self._registry.get_schemas(context.capabilities) if enabled else []
        if offered:
            kwargs["tools"] = offered
            kwargs["tool_choice"] = TOOL_CHOICE_AUTO
        else:
            schemas = self._registry.get_schemas()
            if schemas:
                kwargs["tools"] = schemas
                kwargs["tool_choice"] = TOOL_CHOICE_NONE
        return kwargs

    async def _create(self, **kwargs: Any) -> Any:
        try:
            async with asyncio.timeout(self._timeout):
                return await self._client.messages.create(**kwargs)
        except (TimeoutError, anthropic.APITimeoutError) as exc:
            msg = f"Model call exceeded {self._timeout:.0f}s"
            raise UpstreamTimeout(msg) from exc
        except anthropic.APIError as exc:
            msg = f"Model call failed: {exc}"
            raise UpstreamError(msg) from exc

    async def invoke(
        self, context: AssembledContext, tools_enabled: bool | None = None
    ) -> ModelReply:
        kwargs = self.build_request(context, tools_enabled)
        t0 = time.monotonic()
        response = await self._create(**kwargs)
        latency_ms = int((time.monotonic() - t0) * 1000)

        texts: list[str] = []
        function_call: FunctionCall | None = None
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use" and function_call is None:
                function_call = FunctionCall(
                    name=block.name, args=dict(block.input or {}), id=block.id
                )

        reply = ModelReply(
            text="".join(texts),
            function_call=function_call,
            usage=Usage.from_response(response.usage),
            latency_ms=latency_ms,
        )
        logger.info(
            "Model replied in %dms (tool_choice=%s, function_call=%s, in=%d, out=%d, cached=%d)",
            latency_ms,
            kwargs.get("tool_choice", {}).get("type", "-"),
            function_call.name if function_call else None,
            reply.usage.input_tokens,
            reply.usage.output_tokens,
            reply.usage.cache_read_input_tokens,
        )
        return reply

    async def complete_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 512,
    ) -> str:
        """Single-shot call with no tools and no history (summaries etc.)."""
        kwargs: dict[str, Any] = {
            "model": self._summary_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system is not None:
            kwargs["system"] = system
        response = await self._create(**kwargs)
        return "".join(b.text for b in response.content if b.type == "text")
