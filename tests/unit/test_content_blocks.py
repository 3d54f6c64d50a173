"""Unit Tests for provider content block parsing."""

from ai_gateway.models import TextBlock, ToolUseBlock, ToolResultBlock, ToolCall
from ai_gateway.providers import parse_content_blocks, extract_text, extract_tool_calls


RAW = [
    {"type": "text", "text": "First"},
    {"type": "thinking", "thinking": "internal"},
    {"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {"q": "x"}},
    {"type": "text", "text": "Second"},
    "not-a-block",
    {"type": "tool_use", "name": "missing_id"},
]


def test_parse_skips_unknown_and_malformed():
    blocks = parse_content_blocks(RAW)
    assert [type(b) for b in blocks] == [TextBlock, ToolUseBlock, TextBlock]


def test_parse_string_and_none():
    assert parse_content_blocks("hello") == [TextBlock(text="hello")]
    assert parse_content_blocks("") == []
    assert parse_content_blocks(None) == []


def test_parse_tool_result():
    blocks = parse_content_blocks([{"type": "tool_result", "tool_use_id": "toolu_1", "content": "42"}])
    assert blocks == [ToolResultBlock(tool_use_id="toolu_1", content="42")]


def test_extract_text_joins_text_blocks():
    assert extract_text(parse_content_blocks(RAW)) == "First\nSecond"


def test_extract_tool_calls():
    calls = extract_tool_calls(parse_content_blocks(RAW))
    assert calls == [ToolCall(id="toolu_1", name="lookup", input={"q": "x"})]


def test_tool_only_response_has_empty_text():
    blocks = parse_content_blocks([{"type": "tool_use", "id": "t", "name": "n", "input": {}}])
    assert extract_text(blocks) == ""
    assert len(extract_tool_calls(blocks)) == 1
