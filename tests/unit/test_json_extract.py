"""Tests for structured-output extraction from model text."""

import pytest

from sitegen.exceptions import ValidationError
from sitegen.llm.json_extract import extract_json_from_text, parse_quality_text, strip_code_fences


class TestExtractJson:
    def test_clean_json(self):
        assert extract_json_from_text('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"business_type": "bakery"}\n```\nThanks'
        assert extract_json_from_text(text) == {"business_type": "bakery"}

    def test_prose_around_object(self):
        text = 'Sure! The result is {"overall": 0.7, "issues": ["x"]} as requested.'
        assert extract_json_from_text(text) == {"overall": 0.7, "issues": ["x"]}

    def test_nested_braces_and_strings_with_braces(self):
        text = 'Result: {"a": {"b": [1, 2]}, "c": "curly } brace"} trailing'
        assert extract_json_from_text(text) == {"a": {"b": [1, 2]}, "c": "curly } brace"}

    def test_skips_invalid_span(self):
        text = 'first {not json} then {"ok": true}'
        assert extract_json_from_text(text) == {"ok": True}

    def test_top_level_array(self):
        assert extract_json_from_text("list: [1, 2, 3]") == [1, 2, 3]

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "{broken"])
    def test_raises_validation_error(self, text):
        with pytest.raises(ValidationError) as exc:
            extract_json_from_text(text, prompt_id="research_profile")
        assert exc.value.prompt_id == "research_profile"


class TestStripCodeFences:
    def test_html_fence(self):
        assert strip_code_fences("```html\n<!DOCTYPE html><p>x</p>\n```") == "<!DOCTYPE html><p>x</p>"

    def test_no_fence(self):
        assert strip_code_fences("  <html></html> ") == "<html></html>"


class TestParseQualityText:
    """Degraded fallback for scoring output that is not JSON."""

    def test_decimal_overall(self):
        score = parse_quality_text("Overall: 0.72\nAccuracy: 0.8\nSEO: 0.6")
        assert score.overall == 0.72
        assert score.per_category == {"accuracy": 0.8, "seo": 0.6}
        assert score.degraded is True

    def test_out_of_100(self):
        assert parse_quality_text("Overall score: 72/100").overall == 0.72

    def test_out_of_10(self):
        assert parse_quality_text("The overall quality score is 8/10.").overall == 0.8

    def test_percent(self):
        assert parse_quality_text("overall 85%").overall == 0.85

    def test_bare_large_number_treated_as_percent(self):
        assert parse_quality_text("Overall = 64").overall == 0.64

    @pytest.mark.parametrize("text, expected", [
        ("Overall score: 7", 0.7),
        ("Overall: 10", 1.0),
        ("Overall: 1.5", 0.15),
    ])
    def test_bare_small_number_read_as_out_of_ten(self, text, expected):
        assert parse_quality_text(text).overall == expected

    def test_bare_number_above_100_rejected(self):
        with pytest.raises(ValidationError):
            parse_quality_text("Overall: 250")

    def test_issues_and_suggestions(self):
        text = (
            "Overall: 0.5\n"
            "Issues:\n- Missing phone number\n- No hours\n"
            "Suggestions:\n1. Add a contact section\n"
        )
        score = parse_quality_text(text)
        assert score.issues == ["Missing phone number", "No hours"]
        assert score.suggestions == ["Add a contact section"]

    def test_no_overall_raises(self):
        with pytest.raises(ValidationError):
            parse_quality_text("Looks pretty good to me")
