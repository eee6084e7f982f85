"""Unit tests for field template rendering and defaults."""

import pytest

from models.generation import FieldName
from services.prompts import (
    MAIN_TEXT_MAX_TOKENS,
    SHORT_FIELD_MAX_TOKENS,
    build_field_specs,
    clean_completion,
    render_template,
)


@pytest.mark.unit
class TestRenderTemplate:
    def test_substitutes_known_placeholders(self):
        assert render_template("{theme} / {scriptural_basis}", {"theme": "peace", "scriptural_basis": "Ps 23"}) == "peace / Ps 23"

    def test_unknown_placeholder_renders_empty(self):
        assert render_template("A{missing}B", {}) == "AB"

    def test_non_string_value_renders_empty(self):
        assert render_template("[{count}]", {"count": 3}) == "[]"

    def test_braces_without_word_characters_left_alone(self):
        assert render_template("{ not a placeholder }", {}) == "{ not a placeholder }"

    def test_none_template_is_empty(self):
        assert render_template(None, {"theme": "peace"}) == ""


@pytest.mark.unit
class TestFieldSpecs:
    def test_only_main_text_is_required(self):
        specs = build_field_specs()
        assert set(specs) == set(FieldName)
        assert [name for name, spec in specs.items() if spec.required] == [FieldName.MAIN_TEXT]

    def test_main_text_has_larger_budget(self):
        specs = build_field_specs()
        assert specs[FieldName.MAIN_TEXT].max_tokens == MAIN_TEXT_MAX_TOKENS
        assert specs[FieldName.TITLE].max_tokens == SHORT_FIELD_MAX_TOKENS
        assert MAIN_TEXT_MAX_TOKENS > SHORT_FIELD_MAX_TOKENS

    def test_main_text_template_only_uses_request_fields(self):
        template = build_field_specs()[FieldName.MAIN_TEXT].template
        rendered = render_template(template, {"theme": "peace", "scriptural_basis": "John 14:27"})
        assert "peace" in rendered and "John 14:27" in rendered
        assert "{" not in rendered

    def test_override_replaces_template(self):
        specs = build_field_specs({"title": "Title for {theme}"})
        assert specs[FieldName.TITLE].template == "Title for {theme}"
        assert specs[FieldName.SUBTITLE].template != ""

    def test_empty_override_disables_field(self):
        specs = build_field_specs({"subtitle": ""})
        assert render_template(specs[FieldName.SUBTITLE].template, {"main_text": "x"}) == ""


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Peace Be Still  ", "Peace Be Still"),
        ('"Peace Be Still"', "Peace Be Still"),
        ("```\nPeace Be Still\n```", "Peace Be Still"),
        ("“Peace Be Still”", "Peace Be Still"),
        ("", ""),
    ],
)
def test_clean_completion(raw, expected):
    assert clean_completion(raw) == expected
