"""Conversation, Message and ConversationSummary data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def make_id() -> str:
    """Generate a new row ID."""
    return uuid.uuid4().hex


@dataclass
class Conversation:
    """A chat thread and its turn bookkeeping.

    Attributes:
        id: Unique identifier.
        owner_id: Account that owns the thread.
        profile_id: Memory scope; empty means no durable memory applies.
        title: Human-readable title (used when the thread is fetched as a
            transcript entity).
        mode: Conversation mode, e.g. ``"chat"`` or ``"folder"``.
        turn_count: Completed turns. Only ever increases.
        last_summary_at_turn: Turn at which the latest summary was triggered.
    """

    id: str
    owner_id: str
    profile_id: str = ""
    title: str = ""
    mode: str = "chat"
    turn_count: int = 0
    last_summary_at_turn: int = 0
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = _now()

    def to_row(self) -> tuple:
        return (
            self.id,
            self.owner_id,
            self.profile_id,
            self.title,
            self.mode,
            self.turn_count,
            self.last_summary_at_turn,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            owner_id=row[1],
            profile_id=row[2] or "",
            title=row[3] or "",
            mode=row[4] or "chat",
            turn_count=int(row[5] or 0),
            last_summary_at_turn=int(row[6] or 0),
            created_at=row[7],
        )


@dataclass
class Message:
    """A single stored message."""

    conversation_id: str
    role: str
    text: str
    owner_id: str = ""
    status: str = STATUS_COMPLETE
    mode: str = "chat"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = make_id()
        if not self.created_at:
            self.created_at = _now()

    @property
    def is_usable_history(self) -> bool:
        """Complete, non-empty and not a system/grounding message."""
        return (
            self.role in (ROLE_USER, ROLE_ASSISTANT)
            and self.status == STATUS_COMPLETE
            and bool(self.text.strip())
        )

    def to_row(self) -> tuple:
        return (
            self.id,
            self.conversation_id,
            self.owner_id,
            self.role,
            self.text,
            self.status,
            self.mode,
            json.dumps(self.metadata),
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            owner_id=row[2] or "",
            role=row[3],
            text=row[4] or "",
            status=row[5],
            mode=row[6] or "chat",
            metadata=json.loads(row[7]) if row[7] else {},
            created_at=row[8],
        )

    def to_event(self) -> dict[str, Any]:
        """Shape pushed to the owner's live channel."""
        return {
            "type": "message",
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "text": self.text,
            "status": self.status,
            "mode": self.mode,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class ConversationSummary:
    """Rolling summary covering turns ``from_turn``..``to_turn``."""

    conversation_id: str
    summary_text: str
    from_turn: int = 0
    to_turn: int = 0
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = _now()
