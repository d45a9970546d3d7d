"""
Unit tests for JSON extraction from model output.
"""

import json

import pytest

from llm_orchestrator.utils.exceptions import LLMError
from llm_orchestrator.utils.json_extractor import parse_json, strip_code_fences


class TestStripCodeFences:

    def test_removes_language_tagged_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_removes_bare_fence(self):
        assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"

    def test_plain_text_unchanged(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_inner_fences_are_kept(self):
        raw = '```json\n{"code": "```sh\\nls\\n```"}\n```'
        assert strip_code_fences(raw) == '{"code": "```sh\\nls\\n```"}'


class TestParseJson:
    """Lenient parsing of model responses."""

    def test_plain_object(self):
        assert parse_json('{"score": 7, "tags": ["a", "b"]}') == {"score": 7, "tags": ["a", "b"]}

    def test_fenced_object(self):
        raw = '```json\n{"compliant": true, "issues": []}\n```'
        assert parse_json(raw) == {"compliant": True, "issues": []}

    def test_object_surrounded_by_prose(self):
        raw = 'Here is the analysis you asked for:\n{"risk": "low", "nested": {"x": 1}}\nLet me know if you need more.'
        assert parse_json(raw) == {"risk": "low", "nested": {"x": 1}}

    @pytest.mark.parametrize("value", [
        {"a": 1, "b": [1, 2, {"c": None}]},
        [1, 2, 3],
        [{"a": 1}, {"b": 2}],
        "plain string",
        42,
        True,
        None,
        {"snippet": "```python\nprint(1)\n```"},
        {"md": "use ```js fences"},
        ["```", "``` trailing"],
    ])
    def test_fenced_values_parse_back(self, value):
        raw = f"```json\n{json.dumps(value)}\n```"
        assert parse_json(raw) == value

    def test_top_level_array_is_not_truncated_to_first_object(self):
        assert parse_json('[{"a": 1}, {"b": 2}]') == [{"a": 1}, {"b": 2}]

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_response_raises(self, raw):
        with pytest.raises(LLMError) as exc_info:
            parse_json(raw, provider="openai")
        assert exc_info.value.message == "LLM returned empty response"
        assert exc_info.value.provider == "openai"

    def test_invalid_json_raises_with_bounded_preview(self):
        raw = "x" * 1000

        with pytest.raises(LLMError) as exc_info:
            parse_json(raw)

        message = exc_info.value.message
        assert message.startswith("Invalid JSON response from LLM. Response preview: ")
        assert "x" * 200 in message
        assert "x" * 201 not in message
        assert exc_info.value.details["response_length"] == 1000

    def test_broken_object_in_prose_raises(self):
        with pytest.raises(LLMError, match="Invalid JSON response"):
            parse_json('Result: {"a": 1,, "b": } done')
