"""Free-text answer parsing for runtime questions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Optional

from chatrelay.events import QuestionInfo

__all__ = ["ParsedAnswer", "parse_answer_text", "resolve_option", "split_answer_tokens"]

SKIP_KEYWORDS = frozenset({"skip", "pass", "跳过", "忽略"})

_TOKEN_SPLIT = re.compile(r"[\s,，;；、]+")
_TOKEN_STRIP = re.compile(r"[.。、]")


@dataclass
class ParsedAnswer:
    type: Literal["skip", "custom", "selection"]
    values: list[str] = field(default_factory=list)
    custom: Optional[str] = None


def split_answer_tokens(text: str) -> list[str]:
    return [token.strip() for token in _TOKEN_SPLIT.split(text) if token.strip()]


def resolve_option(token: str, labels: list[str], by_label: dict[str, str]) -> str | None:
    """Resolve one token to an option label by label, letter (A) or 1-based number."""
    cleaned = _TOKEN_STRIP.sub("", token).strip()
    if not cleaned:
        return None

    label = by_label.get(cleaned.lower())
    if label:
        return label

    if len(cleaned) == 1 and cleaned.isascii() and cleaned.isalpha():
        index = ord(cleaned.upper()) - ord("A")
        if 0 <= index < len(labels):
            return labels[index]

    if cleaned.isdigit():
        index = int(cleaned) - 1
        if 0 <= index < len(labels):
            return labels[index]

    return None


def parse_answer_text(text: str, question: QuestionInfo) -> ParsedAnswer | None:
    """Interpret a chat reply as an answer to ``question``; None for empty input."""
    trimmed = text.strip()
    if not trimmed:
        return None

    lower = trimmed.lower()
    if lower in SKIP_KEYWORDS or lower.startswith("跳过"):
        return ParsedAnswer(type="skip")

    labels = [option.label for option in question.options]
    by_label = {label.lower(): label for label in labels}

    exact = by_label.get(lower)
    if exact:
        return ParsedAnswer(type="selection", values=[exact])

    tokens = split_answer_tokens(trimmed)
    if not tokens:
        return ParsedAnswer(type="custom", custom=trimmed)

    matched: list[str] = []
    for token in tokens:
        resolved = resolve_option(token, labels, by_label)
        if resolved is None:
            return ParsedAnswer(type="custom", custom=trimmed)
        matched.append(resolved)

    unique = list(dict.fromkeys(matched))
    if not question.multiple and (len(unique) != 1 or len(tokens) != 1):
        return ParsedAnswer(type="custom", custom=trimmed)
    return ParsedAnswer(type="selection", values=unique)
