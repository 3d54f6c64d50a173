"""
LLM provider relay for the AI Gateway.
"""

from .anthropic import (
    AnthropicRelay,
    ProviderCall,
    ProviderError,
    ProviderResult,
    ProviderStream,
    ProviderStreamError,
    StreamDelta,
    StreamFinal,
    build_body
)
from .content_blocks import parse_content_blocks, extract_text, extract_tool_calls

__all__ = [
    'AnthropicRelay',
    'ProviderCall',
    'ProviderError',
    'ProviderResult',
    'ProviderStream',
    'ProviderStreamError',
    'StreamDelta',
    'StreamFinal',
    'build_body',
    'parse_content_blocks',
    'extract_text',
    'extract_tool_calls'
]
