"""Content block parsing for provider responses.

The provider returns `content` as a list of heterogeneous JSON blocks. This
module turns that list into the closed set of block models (text, tool_use,
tool_result) so nothing else in the gateway reads raw provider JSON.
"""

import logging
from typing import Any, List, Union

from pydantic import TypeAdapter, ValidationError

from ai_gateway.models import ContentBlock, TextBlock, ToolUseBlock, ToolCall

logger = logging.getLogger(__name__)

_block_adapter: TypeAdapter = TypeAdapter(ContentBlock)


def parse_content_blocks(raw: Union[str, List[Any], None]) -> List[ContentBlock]:
    """
    Parse raw provider content into typed blocks.

    A plain string becomes a single text block. Block types the gateway does
    not model (e.g. "thinking") and malformed entries are skipped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return [TextBlock(text=raw)] if raw else []

    blocks: List[ContentBlock] = []
    for item in raw:
        if not isinstance(item, dict):
            logger.debug(f"Skipping non-object content block: {type(item).__name__}")
            continue
        try:
            blocks.append(_block_adapter.validate_python(item))
        except ValidationError:
            logger.debug(f"Skipping unsupported content block type: {item.get('type')}")
    return blocks


def extract_text(blocks: List[ContentBlock]) -> str:
    """Concatenate the text blocks of a response."""
    return "\n".join(block.text for block in blocks if isinstance(block, TextBlock))


def extract_tool_calls(blocks: List[ContentBlock]) -> List[ToolCall]:
    """Tool invocations requested by the model, in response order."""
    return [
        ToolCall(id=block.id, name=block.name, input=block.input)
        for block in blocks
        if isinstance(block, ToolUseBlock)
    ]
