"""System instruction assembly: base rules, grounding data, then memory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_BASE_RULES = """\
You are a thoughtful conversational assistant. Answer in the user's language,
keep replies concise and use Markdown only where it helps readability.

# Referenced material

The conversation may mention documents, notes, earlier conversations or
reports by id. When you need their full content to answer, request them with
exactly one block in this form and nothing else on that line:

<request_documents><ids>["doc_123"]</ids><reason>why you need them</reason></request_documents>

The content will be provided in the next message. Never invent the content of
material you have not been shown.
"""

GROUNDING_HEADER = "# System Data"
MEMORY_HEADER = "# What you know about the user"


def load_base_rules(path: Path | None = None) -> str:
    """Read the base rules from *path*, falling back to the built-in rules."""
    if path is not None:
        if path.exists():
            return path.read_text(encoding="utf-8")
        logger.warning("Base rules file %s not found, using defaults", path)
    return DEFAULT_BASE_RULES


def build_system_text(base_rules: str, grounding: str = "", memory_text: str = "") -> str:
    """Concatenate the instruction sections in their fixed order.

    Empty sections are left out entirely.
    """
    sections = [base_rules.strip()]
    if grounding.strip():
        sections.append(f"{GROUNDING_HEADER}\n\n{grounding.strip()}")
    if memory_text.strip():
        sections.append(f"{MEMORY_HEADER}\n\n{memory_text.strip()}")
    return "\n\n".join(s for s in sections if s)
