"""
Tests for template resolution
"""

import pytest

from promptlab.workflows.templating import (
    MISSING,
    get_nested,
    resolve_template,
    stringify,
)


class TestGetNested:
    """Tests for dotted-path lookups."""

    def test_top_level_and_nested(self):
        store = {"userInput": {"text": "hi", "meta": {"lang": "en"}}}

        assert get_nested(store, "userInput") == {"text": "hi", "meta": {"lang": "en"}}
        assert get_nested(store, "userInput.text") == "hi"
        assert get_nested(store, "userInput.meta.lang") == "en"

    def test_missing_link(self):
        store = {"a": {"b": 1}}

        assert get_nested(store, "a.c") is MISSING
        assert get_nested(store, "x.y") is MISSING
        assert get_nested(store, "a.b.c") is MISSING

    def test_stored_none_is_not_missing(self):
        assert get_nested({"a": None}, "a") is None

    def test_list_index_segments(self):
        store = {"items": [{"name": "first"}, {"name": "second"}]}

        assert get_nested(store, "items.1.name") == "second"
        assert get_nested(store, "items.5.name") is MISSING

    def test_missing_is_falsy_singleton(self):
        assert not MISSING
        assert repr(MISSING) == "MISSING"


class TestStringify:
    def test_values(self):
        assert stringify("text") == "text"
        assert stringify(3) == "3"
        assert stringify(True) == "true"
        assert stringify(False) == "false"
        assert stringify({"a": 1}) == '{\n  "a": 1\n}'
        assert stringify([1, 2]) == "[\n  1,\n  2\n]"


class TestResolveTemplate:
    """Tests for {{ key }} substitution."""

    def test_single_placeholder_returns_raw_value(self):
        image = {"base64": "AAAA", "type": "image/png"}
        store = {"image": image, "count": 3}

        assert resolve_template("{{image}}", store) is image
        assert resolve_template("  {{ count }} ", store) == 3

    def test_single_placeholder_missing_returns_template(self):
        assert resolve_template("{{nothing}}", {}) == "{{nothing}}"

    def test_single_placeholder_stored_none(self):
        assert resolve_template("{{value}}", {"value": None}) is None

    def test_multiple_placeholders_are_stringified(self):
        store = {"userInput": {"text": "hi"}, "data": {"a": 1}, "flag": True}

        result = resolve_template("Say {{userInput.text}} with {{flag}}: {{data}}", store)

        assert result == 'Say hi with true: {\n  "a": 1\n}'

    def test_text_around_single_placeholder(self):
        assert resolve_template("Echo: {{inputText}}", {"inputText": "hi"}) == "Echo: hi"

    def test_missing_key_left_verbatim_with_warning(self, caplog):
        warnings = []

        result = resolve_template("Hello {{name}} and {{other}}", {"name": "Ada"}, warnings)

        assert result == "Hello Ada and {{other}}"
        assert warnings == ['Template key "other" not found in data store.']
        assert "other" in caplog.text

    def test_none_value_left_verbatim(self):
        warnings = []

        assert resolve_template("a {{x}} b", {"x": None}, warnings) == "a {{x}} b"
        assert len(warnings) == 1

    def test_non_string_template_unchanged(self):
        value = {"nested": "{{x}}"}

        assert resolve_template(value, {"x": 1}) is value
        assert resolve_template(42, {}) == 42

    @pytest.mark.parametrize("text", ["plain text", "", "{ {x} }", "{{ bad key }}"])
    def test_text_without_placeholders(self, text):
        assert resolve_template(text, {"x": 1}) == text

    def test_round_trip_string_value(self):
        store = {"k": "some value"}

        assert resolve_template("{{k}}", store) == "some value"
        assert resolve_template("[{{k}}]", store) == "[some value]"
