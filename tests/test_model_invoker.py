"""Tests for ModelInvoker request building and reply parsing."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import anthropic
import pytest

from turnengine.errors import UpstreamError, UpstreamTimeout
from turnengine.llm.client import ModelInvoker, Usage
from turnengine.llm.context import assemble
from turnengine.llm.intent import CAPABILITY_IMAGE_GENERATION
from turnengine.tools.registry import FETCH_DOCUMENTS, GENERATE_IMAGE, default_registry


def _text_block(text: str) -> MagicMock:
    block = MagicMock(type="text")
    block.text = text
    return block


def _tool_block(name: str, args: dict, block_id: str = "toolu_1") -> MagicMock:
    block = MagicMock(type="tool_use", input=args, id=block_id)
    block.name = name
    return block


def _response(*blocks: MagicMock, **usage: int) -> MagicMock:
    response = MagicMock()
    response.content = list(blocks)
    response.usage = MagicMock(
        input_tokens=usage.get("input_tokens", 10),
        output_tokens=usage.get("output_tokens", 5),
        cache_read_input_tokens=usage.get("cache_read_input_tokens", 0),
        cache_creation_input_tokens=usage.get("cache_creation_input_tokens", 0),
    )
    return response


@pytest.fixture
def client() -> MagicMock:
    mock_client = MagicMock()
    mock_client.messages.create = AsyncMock(return_value=_response(_text_block("hello")))
    return mock_client


@pytest.fixture
def invoker(client: MagicMock) -> ModelInvoker:
    return ModelInvoker(
        client,
        default_registry(),
        model="claude-test-model",
        summary_model="claude-test-small",
        timeout_seconds=1.0,
    )


# -- build_request -------------------------------------------------------------


def test_tool_choice_none_without_capabilities(invoker: ModelInvoker) -> None:
    kwargs = invoker.build_request(assemble("hi", [], system_text="rules"))
    assert kwargs["tool_choice"] == {"type": "none"}
    assert {t["name"] for t in kwargs["tools"]} == {FETCH_DOCUMENTS, GENERATE_IMAGE}
    assert kwargs["system"] == "rules"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]


def test_tool_choice_auto_only_for_enabled_capability(invoker: ModelInvoker) -> None:
    ctx = assemble(
        "draw a picture",
        [],
        system_text="rules",
        capabilities=frozenset({CAPABILITY_IMAGE_GENERATION}),
    )
    kwargs = invoker.build_request(ctx)
    assert kwargs["tool_choice"] == {"type": "auto"}
    assert [t["name"] for t in kwargs["tools"]] == [GENERATE_IMAGE]


def test_enabled_capability_without_registered_tool(client: MagicMock) -> None:
    invoker = ModelInvoker(
        client, default_registry(images=False), model="m", summary_model="s", timeout_seconds=1.0
    )
    ctx = assemble(
        "draw a picture",
        [],
        system_text="rules",
        capabilities=frozenset({CAPABILITY_IMAGE_GENERATION}),
    )
    kwargs = invoker.build_request(ctx)
    assert kwargs["tool_choice"] == {"type": "none"}
    assert [t["name"] for t in kwargs["tools"]] == [FETCH_DOCUMENTS]


def test_explicit_override_disables_tools(invoker: ModelInvoker) -> None:
    ctx = assemble(
        "draw a picture",
        [],
        system_text="rules",
        capabilities=frozenset({CAPABILITY_IMAGE_GENERATION}),
    )
    assert invoker.build_request(ctx, tools_enabled=False)["tool_choice"] == {"type": "none"}


def test_cache_handle_marks_system_block(invoker: ModelInvoker) -> None:
    ctx = assemble("hi", [], system_text="rules", cache_handle="cache-abc")
    system = invoker.build_request(ctx)["system"]
    assert system == [
        {"type": "text", "text": "rules", "cache_control": {"type": "ephemeral"}}
    ]


# -- invoke --------------------------------------------------------------------


async def test_invoke_text_reply(invoker: ModelInvoker, client: MagicMock) -> None:
    client.messages.create.return_value = _response(
        _text_block("Hello "), _text_block("there"), input_tokens=42, cache_read_input_tokens=30
    )
    reply = await invoker.invoke(assemble("hi", [], system_text="rules"))

    assert reply.text == "Hello there"
    assert reply.function_call is None
    assert reply.usage.input_tokens == 42
    assert reply.usage.cache_read_input_tokens == 30
    assert client.messages.create.call_args.kwargs["model"] == "claude-test-model"


async def test_invoke_function_call(invoker: ModelInvoker, client: MagicMock) -> None:
    client.messages.create.return_value = _response(
        _text_block("One moment."),
        _tool_block(GENERATE_IMAGE, {"prompt": "calm ocean"}),
    )
    reply = await invoker.invoke(assemble("draw the ocean", [], system_text=""))

    assert reply.text == "One moment."
    assert reply.function_call.name == GENERATE_IMAGE
    assert reply.function_call.args == {"prompt": "calm ocean"}
    assert reply.function_call.id == "toolu_1"


async def test_timeout_raises_upstream_timeout(invoker: ModelInvoker, client: MagicMock) -> None:
    async def slow(**kwargs):
        await asyncio.sleep(5)

    client.messages.create.side_effect = slow
    invoker._timeout = 0.01
    with pytest.raises(UpstreamTimeout):
        await invoker.invoke(assemble("hi", [], system_text=""))


async def test_sdk_timeout_raises_upstream_timeout(
    invoker: ModelInvoker, client: MagicMock
) -> None:
    client.messages.create.side_effect = anthropic.APITimeoutError(request=MagicMock())
    with pytest.raises(UpstreamTimeout):
        await invoker.invoke(assemble("hi", [], system_text=""))


async def test_api_error_raises_upstream_error(invoker: ModelInvoker, client: MagicMock) -> None:
    client.messages.create.side_effect = anthropic.APIConnectionError(request=MagicMock())
    with pytest.raises(UpstreamError):
        await invoker.invoke(assemble("hi", [], system_text=""))
    client.messages.create.assert_awaited_once()


# -- complete_text -------------------------------------------------------------


async def test_complete_text_uses_summary_model(
    invoker: ModelInvoker, client: MagicMock
) -> None:
    result = await invoker.complete_text("summarize", system="Be brief.", max_tokens=100)

    assert result == "hello"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-test-small"
    assert kwargs["system"] == "Be brief."
    assert kwargs["max_tokens"] == 100
    assert "tools" not in kwargs


async def test_complete_text_omits_system_when_none(
    invoker: ModelInvoker, client: MagicMock
) -> None:
    await invoker.complete_text("summarize")
    assert "system" not in client.messages.create.call_args.kwargs


# -- Usage ---------------------------------------------------------------------


def test_usage_addition() -> None:
    total = Usage(10, 5, 2, 1) + Usage(1, 1, 1, 1)
    assert total.to_dict() == {
        "input_tokens": 11,
        "output_tokens": 6,
        "cache_read_input_tokens": 3,
        "cache_creation_input_tokens": 2,
    }


def test_usage_from_missing_response() -> None:
    assert Usage.from_response(None) == Usage()
