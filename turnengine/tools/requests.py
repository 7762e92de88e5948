"""Tool request parsing.

The model can ask for a tool two ways: a structured ``tool_use`` block, or
an inline tag in its text::

    <request_documents><ids>["doc_123", "note_04"]</ids><reason>...</reason></request_documents>

``parse_tool_request`` turns either surface into a ``ToolRequest`` so the
resolver never has to care which one produced it.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from turnengine.llm.client import ModelReply

logger = logging.getLogger(__name__)

_INLINE_BLOCK_RE = re.compile(
    r"<request_documents>\s*<ids>(?P<ids>.*?)</ids>\s*"
    r"(?:<reason>(?P<reason>.*?)</reason>\s*)?</request_documents>",
    re.DOTALL | re.IGNORECASE,
)
_UNCLOSED_BLOCK_RE = re.compile(
    r"<request_documents>(?:(?!</request_documents>).)*\Z", re.DOTALL | re.IGNORECASE
)
_STRAY_TAG_RE = re.compile(r"</?(?:request_documents|ids|reason)>", re.IGNORECASE)
_EXTRA_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class StructuredRequest:
    """A ``tool_use`` block: tool name plus raw arguments."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass(frozen=True)
class InlineRequest:
    """One or more inline ``<request_documents>`` tags, merged."""

    ids: tuple[str, ...]
    reason: str = ""


@dataclass(frozen=True)
class NoRequest:
    pass


ToolRequest = StructuredRequest | InlineRequest | NoRequest
NO_REQUEST = NoRequest()


def _parse_ids(raw: str) -> list[str]:
    raw = raw.strip()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = None
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    # tolerate loose lists: doc_1, "doc_2", [doc_3]
    parts = re.split(r"[\s,\[\]]+", raw)
    return [p.strip("\"' ") for p in parts if p.strip("\"' ")]


def parse_inline(text: str) -> InlineRequest | None:
    """Merge every complete inline block in *text* into one request."""
    ids: list[str] = []
    reasons: list[str] = []
    for match in _INLINE_BLOCK_RE.finditer(text or ""):
        for entity_id in _parse_ids(match.group("ids")):
            if entity_id not in ids:
                ids.append(entity_id)
        reason = (match.group("reason") or "").strip()
        if reason and reason not in reasons:
            reasons.append(reason)
    if not ids:
        return None
    return InlineRequest(ids=tuple(ids), reason="; ".join(reasons))


def parse_tool_request(reply: ModelReply) -> ToolRequest:
    """Normalize a model reply into a single tool request variant.

    A structured call wins over inline tags in the same reply.
    """
    if reply.function_call is not None:
        call = reply.function_call
        return StructuredRequest(name=call.name, args=dict(call.args), call_id=call.id)
    inline = parse_inline(reply.text)
    if inline is not None:
        return inline
    return NO_REQUEST


def strip_tool_markup(text: str) -> str:
    """Remove inline request blocks (including a trailing unclosed one)."""
    cleaned = _INLINE_BLOCK_RE.sub("", text or "")
    cleaned = _UNCLOSED_BLOCK_RE.sub("", cleaned)
    cleaned = _STRAY_TAG_RE.sub("", cleaned)
    cleaned = _EXTRA_BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()
