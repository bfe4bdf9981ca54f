"""Search constants."""

# Exact item lookups always score as a perfect match
EXACT_MATCH_SCORE = 1.0

# Item number similarity for related-item suggestions
PREFIX_MATCH_SCORE = 0.9
CONTAINS_MATCH_SCORE = 0.6
UNRELATED_NUMBER_SCORE = 0.1

# Share of query words (longer than two characters) an exact item's
# description must contain to be kept as an exact match
TEXT_RELEVANCE_THRESHOLD = 0.3
MIN_RELEVANT_WORD_LENGTH = 3

SMART_SEARCH_EXACT_TYPE = "exact"
