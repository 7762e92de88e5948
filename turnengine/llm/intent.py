"""Explicit-intent rules that decide which tools the model may call this turn.

Only the current message is inspected. A capability is enabled when one
clause of the message contains an action verb and a domain noun (or a
shorthand token such as ``/image``) and no negation cue comes before the
verb in that clause.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

CAPABILITY_IMAGE_GENERATION = "image_generation"
CAPABILITY_ENTITY_LOOKUP = "entity_lookup"

NEGATION_CUES = frozenset({
    "don't", "dont", "do not", "not", "no", "never", "without", "stop",
    "won't", "wont", "doesn't", "didn't", "can't", "cannot", "shouldn't", "nor",
})

_CLAUSE_SPLIT_RE = re.compile(r"[,.!?;:\n]+|\s+but\s+")
_TOKEN_RE = re.compile(r"/?[a-z0-9']+")


@dataclass(frozen=True)
class IntentRule:
    """Verb + noun (or shorthand) rule for a single capability."""

    capability: str
    verbs: frozenset[str]
    nouns: frozenset[str]
    shorthands: frozenset[str] = frozenset()

    def matches_clause(self, tokens: list[str]) -> bool:
        trigger = _first_index(tokens, self.shorthands)
        if trigger is None:
            verb_at = _first_index(tokens, self.verbs)
            if verb_at is None or _first_index(tokens, self.nouns) is None:
                return False
            trigger = verb_at
        return not _negated_before(tokens, trigger)


def _first_index(tokens: list[str], vocabulary: frozenset[str]) -> int | None:
    for i, token in enumerate(tokens):
        if token in vocabulary:
            return i
    return None


def _negated_before(tokens: list[str], position: int) -> bool:
    preceding = tokens[:position]
    if any(t in NEGATION_CUES for t in preceding):
        return True
    # two-word cue ("do not")
    return any(f"{a} {b}" in NEGATION_CUES for a, b in zip(preceding, preceding[1:]))


def split_clauses(text: str) -> list[list[str]]:
    """Lowercase *text*, split it into clauses and tokenize each."""
    normalized = text.lower().replace("’", "'")
    clauses = []
    for clause in _CLAUSE_SPLIT_RE.split(normalized):
        tokens = _TOKEN_RE.findall(clause)
        if tokens:
            clauses.append(tokens)
    return clauses


IMAGE_RULE = IntentRule(
    capability=CAPABILITY_IMAGE_GENERATION,
    verbs=frozenset({
        "generate", "create", "make", "draw", "render", "paint", "show",
        "design", "sketch", "illustrate", "produce", "visualize", "imagine",
    }),
    nouns=frozenset({
        "image", "images", "picture", "pictures", "pic", "photo", "photos",
        "drawing", "illustration", "painting", "artwork", "portrait",
        "wallpaper", "logo",
    }),
    shorthands=frozenset({"/image", "/img", "/imagine", "/draw"}),
)

ENTITY_RULE = IntentRule(
    capability=CAPABILITY_ENTITY_LOOKUP,
    verbs=frozenset({
        "open", "read", "check", "look", "find", "pull", "fetch", "review",
        "summarize", "reference", "use", "show", "get", "see", "compare",
        "recall",
    }),
    nouns=frozenset({
        "document", "documents", "doc", "docs", "file", "files", "note",
        "notes", "journal", "entry", "entries", "transcript", "transcripts",
        "report", "reports", "pdf",
    }),
    shorthands=frozenset({"/doc", "/docs", "/notes", "/report"}),
)

DEFAULT_RULES: tuple[IntentRule, ...] = (IMAGE_RULE, ENTITY_RULE)


def enabled_capabilities(
    text: str, rules: tuple[IntentRule, ...] = DEFAULT_RULES
) -> frozenset[str]:
    """Capabilities the current message explicitly asks for."""
    clauses = split_clauses(text)
    return frozenset(
        rule.capability
        for rule in rules
        if any(rule.matches_clause(tokens) for tokens in clauses)
    )


def tools_enabled(text: str, rules: tuple[IntentRule, ...] = DEFAULT_RULES) -> bool:
    """True when any tool capability applies to *text*."""
    return bool(enabled_capabilities(text, rules))
