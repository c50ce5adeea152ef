"""
Tests for the rule-based product classifier and its lookup tables.
"""

import pytest

from audiencelens.core.constants import PRODUCT_CATEGORIES
from audiencelens.core.product_classifier import (
    GENERIC_KEYWORDS,
    GENERIC_TARGET_AUDIENCE,
    calculate_confidence,
    classify_product,
    extract_adjectives,
    generate_keywords,
    generate_target_audience,
    get_primary_category,
    get_sub_category,
    normalize_category,
)


class TestClassifyProduct:

    def test_known_brand_uses_hierarchical_result(self):
        result = classify_product(["Shoe", "Sneaker"], "NIKE Air")

        assert result.category == "fashion"
        assert result.product_name == "nike footwear"
        assert result.confidence == 85

    def test_specific_product_pattern(self):
        result = classify_product(["Hamburger", "Food"], "McDonald's")

        assert result.category == "food"
        assert result.product_name == "Big Mac Burger"
        assert result.confidence > 70

    def test_low_confidence_uses_first_detected_item(self):
        result = classify_product(["Mobile phone", "Smartphone"], "iPhone 15 Pro")

        assert result.category == "electronics"
        assert result.product_name == "Mobile phone"
        assert result.confidence == 60

    def test_unrecognized_item_maps_to_other(self):
        result = classify_product(["Widget"], "")

        assert result.category == "other"
        assert result.product_name == "Widget"
        assert result.confidence == 65

    def test_nothing_detected(self):
        result = classify_product([], "")

        assert result.category == "other"
        assert result.product_name == "Unknown Product"
        assert result.confidence == 30

    @pytest.mark.parametrize("items,text", [
        ([], ""),
        (["Laptop"], "dell"),
        (["Toy", "Puzzle"], ""),
        (["Ring", "Gold"], "18k"),
        (["Chair"], "IKEA"),
        (["Something"], "random words"),
    ])
    def test_category_is_always_in_taxonomy(self, items, text):
        result = classify_product(items, text)
        assert result.category in PRODUCT_CATEGORIES
        assert 30 <= result.confidence <= 95


class TestHierarchy:

    def test_primary_category_order(self):
        # "watch" matches electronics before jewelry
        assert get_primary_category("gold watch") == "electronics"
        assert get_primary_category("diamond necklace") == "jewelry"
        assert get_primary_category("nothing here") == "unknown"

    def test_sub_category(self):
        assert get_sub_category("laptop computer", "electronics") == "computers"
        assert get_sub_category("scarf", "fashion") == "general_fashion"
        assert get_sub_category("sofa", "home") == "general"

    def test_adjectives_one_per_group(self):
        assert extract_adjectives("red blue large premium") == ["red", "large", "premium"]
        assert extract_adjectives("plain") == []

    def test_confidence_is_capped(self):
        combined = "apple samsung technology digital smart electronic device gadget a b c d e"
        assert calculate_confidence(combined, ["a", "b", "c", "d", "e"], "electronics") == 95

    def test_normalize_category(self):
        assert normalize_category("unknown") == "other"
        assert normalize_category("general") == "other"
        assert normalize_category("toys") == "toys"


class TestLookupTables:

    def test_target_audience_by_product_name(self):
        assert generate_target_audience("electronics", "Apple iphone 15") == [
            "18-45歲數位用戶", "科技愛好者", "商務人士", "學生群體",
        ]

    def test_target_audience_category_default(self):
        assert generate_target_audience("books", "Novel") == ["16-70歲知識追求者", "學生群體", "專業人士", "終身學習者"]

    def test_target_audience_unknown_category(self):
        assert generate_target_audience("other", "Widget") == GENERIC_TARGET_AUDIENCE

    def test_keywords_prefixed_with_first_two_detected_items(self):
        keywords = generate_keywords("food", "Big Mac Burger", ["Hamburger", "Food", "Bun"])
        assert keywords == ["Hamburger", "Food", "fast food", "quick meals", "convenience food", "casual dining"]

    def test_keywords_unknown_category(self):
        assert generate_keywords("other", "Widget", []) == GENERIC_KEYWORDS

    def test_lookup_results_are_copies(self):
        first = generate_target_audience("other", "Widget")
        first.append("mutated")
        assert "mutated" not in generate_target_audience("other", "Widget")
