"""Context assembly: summary pair, history window, current message."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from turnengine.conversations.models import ROLE_ASSISTANT, ROLE_USER

if TYPE_CHECKING:
    from collections.abc import Sequence

    from turnengine.conversations.models import Message

SUMMARY_ACK = "Understood. I'll keep that context in mind."


def summary_preamble(summary: str) -> str:
    return f"[Previous conversation context: {summary}]"


@dataclass(frozen=True)
class ContextTurn:
    role: str
    text: str


@dataclass
class AssembledContext:
    """Everything one model invocation needs.

    ``turns`` is in the exact order the model sees it. ``cache_handle`` is
    set when the system text may be sent as a cached prefix.
    """

    turns: list[ContextTurn]
    system_text: str
    cache_handle: str | None = None
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def tools_enabled(self) -> bool:
        return bool(self.capabilities)

    def with_turn(self, turn: ContextTurn) -> AssembledContext:
        """Copy of this context with *turn* appended and all tools switched off."""
        return AssembledContext(
            turns=[*self.turns, turn],
            system_text=self.system_text,
            cache_handle=self.cache_handle,
            capabilities=frozenset(),
        )

    def to_messages(self) -> list[dict[str, Any]]:
        """Anthropic ``messages`` payload. Adjacent same-role turns are merged."""
        messages: list[dict[str, Any]] = []
        for turn in self.turns:
            if messages and messages[-1]["role"] == turn.role:
                messages[-1]["content"] += f"\n\n{turn.text}"
            else:
                messages.append({"role": turn.role, "content": turn.text})
        return messages


def assemble(
    current_message: str,
    history: Sequence[Message],
    *,
    system_text: str,
    summary: str | None = None,
    cache_handle: str | None = None,
    capabilities: frozenset[str] = frozenset(),
    history_limit: int = 8,
) -> AssembledContext:
    """Build the ordered context for one turn.

    Args:
        current_message: The inbound user text. Always the last turn.
        history: Stored messages, newest first. Anything that is not a
            complete, non-empty user or assistant message is skipped.
        system_text: Fully built system instruction.
        summary: Latest rolling summary, if any.
        cache_handle: Valid context-cache handle, if any.
        capabilities: Tool capabilities enabled for this turn.
        history_limit: Maximum number of history turns kept.
    """
    turns: list[ContextTurn] = []
    if summary and summary.strip():
        turns.append(ContextTurn(ROLE_USER, summary_preamble(summary.strip())))
        turns.append(ContextTurn(ROLE_ASSISTANT, SUMMARY_ACK))

    window = [m for m in history if m.is_usable_history][:history_limit]
    turns.extend(ContextTurn(m.role, m.text) for m in reversed(window))

    turns.append(ContextTurn(ROLE_USER, current_message))
    return AssembledContext(
        turns=turns,
        system_text=system_text,
        cache_handle=cache_handle,
        capabilities=capabilities,
    )
