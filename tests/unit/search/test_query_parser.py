"""Unit tests for query intent parsing."""

import pytest

from mbs_catalog.services.search.query_parser import (
    QueryIntent,
    describe_intent,
    generate_search_suggestions,
    parse_search_query,
    should_search_exact_item,
)


class TestParseSearchQuery:

    def test_pure_number_is_exact_lookup(self):
        parsed = parse_search_query("23")

        assert parsed.intent == QueryIntent.EXACT_ITEM_NUMBER
        assert parsed.item_number == 23
        assert parsed.confidence == 1.0
        assert parsed.text_query is None

    def test_seven_digits_is_text(self):
        parsed = parse_search_query("1234567")

        assert parsed.intent == QueryIntent.TEXT_SEARCH
        assert parsed.confidence == 0.8

    @pytest.mark.parametrize(
        "raw, number, text",
        [
            ("item 23 consultation", 23, "consultation"),
            ("MBS 104 specialist referral", 104, "specialist referral"),
            ("skin biopsy #30071", 30071, "skin biopsy"),
            ("item 23", 23, None),
            ("# 36", 36, None),
        ],
    )
    def test_keyword_anchored_number(self, raw, number, text):
        parsed = parse_search_query(raw)

        assert parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT
        assert parsed.item_number == number
        assert parsed.text_query == text
        assert parsed.confidence == 0.9

    @pytest.mark.parametrize(
        "raw, number, text",
        [
            ("23 consultation", 23, "consultation"),
            ("general practitioner 36", 36, "general practitioner"),
        ],
    )
    def test_positional_number(self, raw, number, text):
        parsed = parse_search_query(raw)

        assert parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT
        assert parsed.item_number == number
        assert parsed.text_query == text
        assert parsed.confidence == 0.7

    def test_free_text(self):
        parsed = parse_search_query("  general   practitioner ")

        assert parsed.intent == QueryIntent.TEXT_SEARCH
        assert parsed.text_query == "general practitioner"
        assert parsed.item_number is None

    def test_empty_query(self):
        parsed = parse_search_query("   ")

        assert parsed.intent == QueryIntent.TEXT_SEARCH
        assert parsed.confidence == 0.0
        assert describe_intent(parsed) == "Empty search"


class TestIntentHelpers:

    def test_exact_lookup_recommended_for_confident_intents(self):
        assert should_search_exact_item(parse_search_query("23")) is True
        assert should_search_exact_item(parse_search_query("item 23 consultation")) is True
        assert should_search_exact_item(parse_search_query("23 consultation")) is False
        assert should_search_exact_item(parse_search_query("consultation")) is False

    def test_describe_intent(self):
        assert describe_intent(parse_search_query("23")) == "Looking up MBS item 23"
        assert "consultation" in describe_intent(parse_search_query("item 23 consultation"))

    def test_suggestions_exclude_original_query(self):
        assert generate_search_suggestions(parse_search_query("104")) == ["item 104", "items starting with 10"]
        assert generate_search_suggestions(parse_search_query("skin lesion excision")) == ["skin lesion", "skin"]
        assert generate_search_suggestions(parse_search_query("23 consultation")) == ["23", "consultation"]
