"""Tests for extraction value normalization and similarity rules."""

import pytest

from capy_web.core.normalization import (
    normalize_fields,
    normalize_key,
    normalize_scalar,
    parse_number,
    render_text,
    snippet_hash,
    values_conflict,
    values_similar,
)


class TestParseNumber:
    """Test human-formatted number parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("42", 42.0),
            ("$1,200", 1200.0),
            ("€49.99", 49.99),
            ("2.5M", 2_500_000.0),
            ("300k", 300_000.0),
            ("1.2bn", 1_200_000_000.0),
            ("15%", 15.0),
            ("-3", -3.0),
        ],
    )
    def test_quantities(self, text, expected):
        assert parse_number(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["$49/month", "version 2", "12,34", ""])
    def test_non_quantities(self, text):
        assert parse_number(text) is None


class TestNormalize:
    """Test canonical forms."""

    def test_keys_lose_case_and_separators(self):
        assert normalize_key("Monthly_Price") == "monthlyprice"
        assert normalize_key("monthly-price") == "monthlyprice"
        assert normalize_key("Monthly Price") == "monthlyprice"

    def test_strings_collapse_whitespace(self):
        assert normalize_scalar("  Acme   Corp ") == "acme corp"

    def test_numeric_strings_become_numbers(self):
        assert normalize_scalar("$1,200") == 1200.0
        assert normalize_scalar(7) == 7.0

    def test_booleans_and_none_untouched(self):
        assert normalize_scalar(True) is True
        assert normalize_scalar(None) is None

    def test_lists_sorted(self):
        assert normalize_scalar(["Slack", "github"]) == ["github", "slack"]

    def test_empty_fields_dropped(self):
        fields = normalize_fields({"Plan": "Pro", "notes": "", "tags": [], "limit": None})
        assert fields == {"plan": "pro"}

    def test_snippet_hash_stable(self):
        assert snippet_hash({"a": 1, "b": 2}) == snippet_hash({"b": 2, "a": 1})
        assert len(snippet_hash({"a": 1})) == 16

    def test_render_text(self):
        assert render_text({"plan": "Pro", "features": ["SSO", "API"]}) == "plan: Pro; features: SSO, API"


class TestSimilarity:
    """Test similarity and conflict rules."""

    def test_numbers_within_variance(self):
        assert values_similar(100.0, 104.0)
        assert not values_similar(100.0, 110.0)

    def test_strings_by_word_overlap(self):
        assert values_similar("acme corp", "corp acme")
        assert not values_similar("acme corp inc", "acme corp")

    def test_lists_by_set_overlap(self):
        assert values_similar(["a", "b"], ["b", "a"])
        assert not values_similar(["a", "b"], ["a", "c"])

    def test_records_subset_match(self):
        assert values_similar({"price": 49.0}, {"price": 49.0, "plan": "pro"})
        assert not values_similar({"price": 49.0}, {"seats": 10.0})

    def test_scalar_disagreement_conflicts(self):
        assert values_conflict(49.0, 99.0)
        assert not values_conflict(49.0, 49.5)

    def test_single_shared_field_disagreement_conflicts(self):
        assert values_conflict({"price": 49.0}, {"price": 99.0})

    def test_partial_agreement_conflicts(self):
        assert values_conflict(
            {"plan": "pro", "price": 49.0},
            {"plan": "pro", "price": 59.0},
        )

    def test_different_things_do_not_conflict(self):
        assert not values_conflict(
            {"plan": "pro", "price": 49.0},
            {"plan": "team", "price": 99.0},
        )

    def test_disjoint_records_do_not_conflict(self):
        assert not values_conflict({"price": 49.0}, {"founded": 2015.0})
