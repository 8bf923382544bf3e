"""Tests for autocomplete scoring, highlighting and suggestion gathering."""

import pytest

from conftest import make_item
from matcharank.search.facets import (
    SuggestionType,
    gather_suggestions,
    highlight_match,
    suggestion_score,
)
from matcharank.search.index import build_entry


def test_suggestion_score_by_match_kind():
    assert suggestion_score("Uji", "uji", 0.0) == pytest.approx(1.0)
    assert suggestion_score("Ujitawara", "uji", 0.0) == pytest.approx(0.8)
    assert suggestion_score("Kyoto Uji", "uji", 0.0) == pytest.approx(0.6)
    assert suggestion_score("Nishio", "uji", 0.0) == 0.0


def test_popularity_bonus_is_capped():
    assert suggestion_score("Ujitawara", "uji", 0.5) == pytest.approx(0.9)
    assert suggestion_score("Ujitawara", "uji", 40.0) == pytest.approx(1.0)


def test_highlight_preserves_case():
    assert highlight_match("ceremonial", "cer") == "<mark>cer</mark>emonial"
    assert highlight_match("Ippodo Ceremonial", "cer") == "Ippodo <mark>Cer</mark>emonial"
    assert highlight_match("Uji", "") == "Uji"


def test_gather_suggestions_dedupes_by_text_and_type():
    entries = [
        build_entry(make_item("a1", "Ceremonial Blend", "ceremonial", "Uji, Kyoto", 30.0)),
        build_entry(make_item("a2", "Ceremonial Blend", "ceremonial", "Uji, Kyoto", 32.0,
                              purchase_count=3)),
        build_entry(make_item("a3", "Daily Culinary", "culinary", "Kagoshima", 15.0)),
    ]

    suggestions = gather_suggestions(entries, "cer", ["ceremonial blend"], limit=10)

    keys = [(s.text.lower(), s.type) for s in suggestions]
    assert len(keys) == len(set(keys))
    products = [s for s in suggestions if s.type == SuggestionType.PRODUCT]
    assert len(products) == 1
    # The more popular duplicate wins
    assert products[0].score == pytest.approx(0.8 + 0.2 * 1.0)
    assert {s.type for s in suggestions} == {
        SuggestionType.PRODUCT,
        SuggestionType.GRADE,
        SuggestionType.QUERY,
    }


def test_gather_suggestions_respects_limit():
    entries = [
        build_entry(make_item(f"b{n}", f"Matcha No {n}", "premium", "Shizuoka", 20.0 + n))
        for n in range(8)
    ]
    assert len(gather_suggestions(entries, "matcha", [], limit=3)) == 3


def test_service_autocomplete(search_service):
    suggestions = search_service.get_autocomplete("cer")

    assert suggestions[0].text == "ceremonial"
    assert suggestions[0].type == SuggestionType.GRADE
    assert suggestions[0].highlight == "<mark>cer</mark>emonial"
    assert suggestions[0].score == pytest.approx(0.92)
    product_texts = {s.text for s in suggestions if s.type == SuggestionType.PRODUCT}
    assert "Ippodo Uji Ceremonial Matcha" in product_texts


def test_service_autocomplete_ignores_single_character(search_service):
    assert search_service.get_autocomplete("c") == []
    assert search_service.get_autocomplete("") == []


def test_punctuated_names_match_normalized_fragments():
    """Test hyphens and apostrophes in catalog text match a normalized fragment."""
    assert suggestion_score("Uji-Matcha Ceremonial", "uji matcha", 0.0) == pytest.approx(0.8)
    assert suggestion_score("Marukyu's", "marukyu s", 0.0) == pytest.approx(1.0)
    assert highlight_match("Uji-Matcha Ceremonial", "uji matcha") == "<mark>Uji-Matcha</mark> Ceremonial"

    entries = [
        build_entry(make_item("h1", "Uji-Matcha Ceremonial", "ceremonial", "Uji, Kyoto", 40.0)),
        build_entry(make_item("h2", "Aoarashi", "premium", "Uji, Kyoto", 30.0,
                              provider="Marukyu's")),
    ]

    products = gather_suggestions(entries, "uji matcha", [], limit=5)
    brands = gather_suggestions(entries, "marukyu s", [], limit=5)

    assert [(s.text, s.type) for s in products] == [
        ("Uji-Matcha Ceremonial", SuggestionType.PRODUCT)
    ]
    assert [(s.text, s.type) for s in brands] == [("Marukyu's", SuggestionType.BRAND)]
