"""Tests for context assembly."""

from turnengine.conversations.models import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    STATUS_PENDING,
    Message,
)
from turnengine.llm.context import SUMMARY_ACK, AssembledContext, ContextTurn, assemble


def _history(*pairs: tuple[str, str], **kwargs) -> list[Message]:
    """Build history newest first from (role, text) pairs given oldest first."""
    messages = [Message(conversation_id="c", role=r, text=t, **kwargs) for r, t in pairs]
    return list(reversed(messages))


def test_current_message_only() -> None:
    ctx = assemble("hi", [], system_text="rules")
    assert ctx.turns == [ContextTurn(ROLE_USER, "hi")]
    assert ctx.system_text == "rules"
    assert ctx.cache_handle is None
    assert not ctx.tools_enabled


def test_history_oldest_first_then_current() -> None:
    history = _history((ROLE_USER, "one"), (ROLE_ASSISTANT, "two"), (ROLE_USER, "three"))
    ctx = assemble("four", history, system_text="")
    assert [t.text for t in ctx.turns] == ["one", "two", "three", "four"]


def test_summary_pair_comes_first() -> None:
    history = _history((ROLE_USER, "earlier"), (ROLE_ASSISTANT, "reply"))
    ctx = assemble("now", history, system_text="", summary="User likes hiking.")

    assert ctx.turns[0] == ContextTurn(
        ROLE_USER, "[Previous conversation context: User likes hiking.]"
    )
    assert ctx.turns[1] == ContextTurn(ROLE_ASSISTANT, SUMMARY_ACK)
    assert [t.text for t in ctx.turns[2:]] == ["earlier", "reply", "now"]


def test_blank_summary_ignored() -> None:
    ctx = assemble("now", [], system_text="", summary="   ")
    assert len(ctx.turns) == 1


def test_history_limit_keeps_most_recent() -> None:
    history = _history(*[(ROLE_USER, str(i)) for i in range(12)])
    ctx = assemble("now", history, system_text="", history_limit=8)
    assert [t.text for t in ctx.turns] == [str(i) for i in range(4, 12)] + ["now"]


def test_unusable_history_filtered_before_limit() -> None:
    history = [
        Message(conversation_id="c", role=ROLE_ASSISTANT, text="b"),
        Message(conversation_id="c", role=ROLE_SYSTEM, text="grounding"),
        Message(conversation_id="c", role=ROLE_ASSISTANT, text=""),
        Message(conversation_id="c", role=ROLE_ASSISTANT, text="...", status=STATUS_PENDING),
        Message(conversation_id="c", role=ROLE_USER, text="a"),
    ]
    ctx = assemble("now", history, system_text="", history_limit=2)
    assert [t.text for t in ctx.turns] == ["a", "b", "now"]


def test_with_turn_disables_tools() -> None:
    ctx = assemble(
        "draw a picture", [], system_text="", capabilities=frozenset({"image_generation"})
    )
    assert ctx.tools_enabled

    followup = ctx.with_turn(ContextTurn(ROLE_USER, "extra"))
    assert not followup.tools_enabled
    assert [t.text for t in followup.turns] == ["draw a picture", "extra"]
    assert len(ctx.turns) == 1


def test_to_messages_merges_same_role() -> None:
    ctx = AssembledContext(
        turns=[
            ContextTurn(ROLE_USER, "a"),
            ContextTurn(ROLE_USER, "b"),
            ContextTurn(ROLE_ASSISTANT, "c"),
            ContextTurn(ROLE_USER, "d"),
        ],
        system_text="",
    )
    assert ctx.to_messages() == [
        {"role": "user", "content": "a\n\nb"},
        {"role": "assistant", "content": "c"},
        {"role": "user", "content": "d"},
    ]
