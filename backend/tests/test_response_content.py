"""Tests for classifying workflow output for display."""

import pytest

from studio.models import EmptyContent, JsonContent, TextContent, resolve_content
from studio.models.response import EMPTY_OUTPUT_MESSAGE, response_content_adapter


class TestResolveContent:
    """Tests for resolve_content."""

    def test_text_field_wins(self):
        content = resolve_content({"text": "Hi there", "extra": 1})

        assert content == TextContent(value="Hi there")
        assert content.as_output() == "Hi there"

    def test_mapping_without_text_is_json(self):
        content = resolve_content({"sum": 12})

        assert isinstance(content, JsonContent)
        assert content.as_output() == '{"sum": 12}'

    def test_empty_text_field_is_json(self):
        assert isinstance(resolve_content({"text": ""}), JsonContent)

    def test_list_is_json(self):
        assert resolve_content([1, 2]) == JsonContent(value=[1, 2])

    def test_scalar_is_text(self):
        assert resolve_content(42) == TextContent(value="42")

    @pytest.mark.parametrize("raw", [None, "", {}, []])
    def test_empty(self, raw):
        content = resolve_content(raw)

        assert isinstance(content, EmptyContent)
        assert content.as_output() == EMPTY_OUTPUT_MESSAGE


class TestResponseContentAdapter:
    """Tests for the tagged union."""

    def test_validates_by_kind(self):
        content = response_content_adapter.validate_python({"kind": "json", "value": {"a": 1}})

        assert isinstance(content, JsonContent)

    def test_dump_includes_kind(self):
        assert resolve_content("done").model_dump() == {"kind": "text", "value": "done"}
