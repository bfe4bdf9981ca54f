"""Query intent parsing.

Classifies a raw search string as an exact item-number lookup, an item
number combined with free text, or a plain text search.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

EXACT_CONFIDENCE = 1.0
KEYWORD_CONFIDENCE = 0.9
POSITIONAL_CONFIDENCE = 0.7
TEXT_CONFIDENCE = 0.8
EXACT_LOOKUP_MIN_CONFIDENCE = 0.8


class QueryIntent(str, Enum):
    EXACT_ITEM_NUMBER = "exact_item_number"
    ITEM_NUMBER_WITH_TEXT = "item_number_with_text"
    TEXT_SEARCH = "text_search"


@dataclass(frozen=True)
class ParsedQuery:
    intent: QueryIntent
    original_query: str
    confidence: float
    item_number: Optional[int] = None
    text_query: Optional[str] = None


_KEYWORD = r"(?:item|mbs)\s+|#\s*"

_EXACT_PATTERN = re.compile(r"^(\d{1,6})$")

# Keyword-anchored number: "item 23", "mbs 23 consultation", "skin biopsy #30071"
_KEYWORD_PATTERNS = (
    re.compile(rf"^(?:{_KEYWORD})(?P<number>\d{{1,6}})$", re.IGNORECASE),
    re.compile(rf"^(?:{_KEYWORD})(?P<number>\d{{1,6}})\s+(?P<text>.+)$", re.IGNORECASE),
    re.compile(rf"^(?P<text>.+?)\s+(?:{_KEYWORD})(?P<number>\d{{1,6}})$", re.IGNORECASE),
)

# Bare number at either end of free text: "23 consultation", "consultation 23"
_POSITIONAL_PATTERNS = (
    re.compile(r"^(?P<number>\d{1,6})\s+(?P<text>.+)$"),
    re.compile(r"^(?P<text>.+?)\s+(?P<number>\d{1,6})$"),
)


def parse_search_query(raw: str) -> ParsedQuery:
    """Classify a raw query string."""
    query = " ".join((raw or "").split())
    if not query:
        return ParsedQuery(intent=QueryIntent.TEXT_SEARCH, original_query=raw or "", confidence=0.0)

    if _EXACT_PATTERN.match(query):
        return ParsedQuery(
            intent=QueryIntent.EXACT_ITEM_NUMBER,
            original_query=raw,
            confidence=EXACT_CONFIDENCE,
            item_number=int(query),
        )

    for patterns, confidence in (
        (_KEYWORD_PATTERNS, KEYWORD_CONFIDENCE),
        (_POSITIONAL_PATTERNS, POSITIONAL_CONFIDENCE),
    ):
        for pattern in patterns:
            match = pattern.match(query)
            if match:
                text = (match.groupdict().get("text") or "").strip() or None
                return ParsedQuery(
                    intent=QueryIntent.ITEM_NUMBER_WITH_TEXT,
                    original_query=raw,
                    confidence=confidence,
                    item_number=int(match.group("number")),
                    text_query=text,
                )

    return ParsedQuery(
        intent=QueryIntent.TEXT_SEARCH,
        original_query=raw,
        confidence=TEXT_CONFIDENCE,
        text_query=query,
    )


def should_search_exact_item(parsed: ParsedQuery) -> bool:
    """Whether an exact item lookup should be run alongside fuzzy search."""
    if parsed.intent == QueryIntent.EXACT_ITEM_NUMBER:
        return True
    return (
        parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT
        and parsed.confidence >= EXACT_LOOKUP_MIN_CONFIDENCE
    )


def describe_intent(parsed: ParsedQuery) -> str:
    if parsed.intent == QueryIntent.EXACT_ITEM_NUMBER:
        return f"Looking up MBS item {parsed.item_number}"
    if parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT:
        if parsed.text_query:
            return f"Looking up MBS item {parsed.item_number} and items matching \"{parsed.text_query}\""
        return f"Looking up MBS item {parsed.item_number}"
    if not parsed.text_query:
        return "Empty search"
    return f"Searching for \"{parsed.text_query}\""


def generate_search_suggestions(parsed: ParsedQuery) -> list[str]:
    """Alternative phrasings to offer when a search returns little."""
    suggestions: list[str] = []
    if parsed.intent == QueryIntent.EXACT_ITEM_NUMBER:
        suggestions.append(f"item {parsed.item_number}")
        number_text = str(parsed.item_number)
        if len(number_text) > 2:
            suggestions.append(f"items starting with {number_text[:-1]}")
    elif parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT:
        suggestions.append(str(parsed.item_number))
        if parsed.text_query:
            suggestions.append(parsed.text_query)
    elif parsed.text_query:
        words = parsed.text_query.split()
        if len(words) > 1:
            suggestions.append(" ".join(words[:-1]))
            suggestions.append(words[0])
    return [s for s in dict.fromkeys(suggestions) if s != parsed.original_query]
