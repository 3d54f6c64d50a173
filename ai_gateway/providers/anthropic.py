"""Anthropic Messages Provider - httpx relay for buffered and streamed calls.

Architecture:
    ProviderCall (normalized) → POST {base}/v1/messages → ProviderResult
    or, with stream=True, a ProviderStream whose events() yields
    StreamDelta per text_delta and exactly one StreamFinal when the body closes.

Failures are uniform: anything before the response starts raises
ProviderError(status, body); anything after it started raises
ProviderStreamError.
"""

import json
import time
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, AsyncIterator, Union

import httpx

from ai_gateway.models import NormalizedMessage, TokenUsage, ToolCall
from ai_gateway.settings import GatewaySettings
from .content_blocks import parse_content_blocks, extract_text, extract_tool_calls

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"


class ProviderError(RuntimeError):
    """Error from the provider before a response started, carrying the HTTP status code."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Provider returned {status_code}: {body[:200]}")


class ProviderStreamError(RuntimeError):
    """Provider failure after the event stream had started."""


@dataclass
class ProviderCall:
    """A normalized provider request."""
    model: str                              # versioned provider model id
    system: str
    messages: List[NormalizedMessage]
    max_tokens: int
    temperature: float
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Dict[str, Any]] = None


@dataclass
class ProviderResult:
    """Buffered provider response."""
    content: str
    usage: Optional[TokenUsage] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    raw_content: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: Optional[str] = None


@dataclass
class StreamDelta:
    text: str


@dataclass
class StreamFinal:
    text: str
    usage: Optional[TokenUsage] = None


StreamEvent = Union[StreamDelta, StreamFinal]


def build_body(call: ProviderCall, stream: bool = False) -> Dict[str, Any]:
    """Request body for the Messages API."""
    body: Dict[str, Any] = {
        "model": call.model,
        "system": call.system,
        "max_tokens": call.max_tokens,
        "temperature": call.temperature,
        "messages": [m.to_provider() for m in call.messages],
    }
    if call.tools:
        body["tools"] = call.tools
        body["tool_choice"] = call.tool_choice or {"type": "auto"}
    if stream:
        body["stream"] = True
    return body


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _usage_from(data: Any) -> Optional[TokenUsage]:
    if not isinstance(data, dict):
        return None
    return TokenUsage(
        input_tokens=data.get("input_tokens"),
        output_tokens=data.get("output_tokens"),
    )


class ProviderStream:
    """
    One open streaming response.

    Finite and not restartable: events() may be consumed once. Closing the
    iterator (e.g. the caller disconnected) closes the upstream response.
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient, model: str):
        self._response = response
        self._client = client
        self.model = model
        self.text = ""
        self.input_tokens: Optional[int] = None
        self.output_tokens: Optional[int] = None
        self._closed = False

    @property
    def usage(self) -> Optional[TokenUsage]:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return TokenUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Parse the provider event stream into deltas and one final event."""
        try:
            async for line in self._response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if not payload or payload == "[DONE]":
                    continue
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring malformed stream line: {payload[:100]}")
                    continue

                if not isinstance(event, dict):
                    logger.debug(f"Ignoring non-object stream event: {payload[:100]}")
                    continue

                delta = self._handle_event(event)
                if delta:
                    self.text += delta
                    yield StreamDelta(text=delta)

            yield StreamFinal(text=self.text, usage=self.usage)

        except httpx.HTTPError as e:
            raise ProviderStreamError(f"Stream interrupted: {e}") from e
        finally:
            await self.aclose()

    def _handle_event(self, event: Dict[str, Any]) -> Optional[str]:
        """Record usage; return the text of a text_delta event."""
        event_type = event.get("type")

        if event_type == "content_block_delta":
            delta = _as_dict(event.get("delta"))
            if delta.get("type") == "text_delta":
                return str(delta.get("text") or "")

        elif event_type == "message_start":
            usage = _as_dict(_as_dict(event.get("message")).get("usage"))
            self.input_tokens = usage.get("input_tokens", self.input_tokens)
            self.output_tokens = usage.get("output_tokens", self.output_tokens)

        elif event_type == "message_delta":
            usage = _as_dict(event.get("usage"))
            self.output_tokens = usage.get("output_tokens", self.output_tokens)

        elif event_type == "error":
            error = _as_dict(event.get("error"))
            raise ProviderStreamError(
                f"{error.get('type', 'error')}: {error.get('message', 'provider stream error')}"
            )

        return None

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        await self._client.aclose()


class AnthropicRelay:
    """
    Client for the Anthropic Messages API.

    Usage:
        relay = AnthropicRelay(settings)
        result = await relay.call(provider_call)
        stream = await relay.open_stream(provider_call)
        async for event in stream.events(): ...
    """

    def __init__(
        self,
        settings: GatewaySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            settings: Gateway settings (API key, base URL, version, timeout)
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.settings = settings
        self.url = f"{settings.anthropic_base_url.rstrip('/')}{MESSAGES_PATH}"
        self.timeout = httpx.Timeout(timeout=settings.provider_timeout_seconds, connect=30.0)
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.settings.anthropic_api_key or "",
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _require_key(self) -> None:
        if not self.settings.has_api_key:
            raise ProviderError(503, "ANTHROPIC_API_KEY not configured")

    async def call(self, call: ProviderCall) -> ProviderResult:
        """
        Buffered call: one request, one JSON response.

        Raises:
            ProviderError: missing key, transport failure or non-2xx status
        """
        self._require_key()
        body = build_body(call)

        start = time.time()
        logger.info(f"🌐 Anthropic call: {self.url} (model: {call.model}, tools: {len(call.tools or [])})")

        try:
            async with self._client() as client:
                response = await client.post(self.url, json=body, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error(f"❌ Provider timeout after {time.time() - start:.2f}s")
            raise ProviderError(504, f"Provider timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Provider transport error: {e}")
            raise ProviderError(502, f"Provider unreachable: {e}") from e

        duration = time.time() - start

        if not response.is_success:
            error_text = response.text
            logger.error(f"❌ Provider error ({response.status_code}): {error_text[:500]}")
            raise ProviderError(response.status_code, error_text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(502, f"Provider returned invalid JSON: {response.text[:200]}") from e

        if not isinstance(data, dict):
            logger.error(f"❌ Provider returned a non-object body: {response.text[:200]}")
            raise ProviderError(502, f"Provider returned an unexpected body: {response.text[:200]}")

        raw_content = data.get("content") if isinstance(data.get("content"), list) else []
        blocks = parse_content_blocks(raw_content)
        result = ProviderResult(
            content=extract_text(blocks),
            usage=_usage_from(data.get("usage")),
            tool_calls=extract_tool_calls(blocks),
            raw_content=raw_content,
            stop_reason=data.get("stop_reason"),
        )

        logger.info(
            f"✅ Anthropic response in {duration:.2f}s "
            f"(stop: {result.stop_reason}, tool_calls: {len(result.tool_calls)}, "
            f"tokens: {result.usage.input_tokens if result.usage else '?'}+"
            f"{result.usage.output_tokens if result.usage else '?'})"
        )
        return result

    async def open_stream(self, call: ProviderCall) -> ProviderStream:
        """
        Open a streaming call and return once the response headers arrived.

        Raises:
            ProviderError: missing key, transport failure or non-2xx status
                before any event was produced
        """
        self._require_key()
        body = build_body(call, stream=True)

        logger.info(f"🌐 Anthropic stream: {self.url} (model: {call.model})")

        client = self._client()
        request = client.build_request("POST", self.url, json=body, headers=self._headers())
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            await client.aclose()
            raise ProviderError(504, f"Provider timeout: {e}") from e
        except httpx.HTTPError as e:
            await client.aclose()
            raise ProviderError(502, f"Provider unreachable: {e}") from e

        if not response.is_success:
            error_text = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            logger.error(f"❌ Provider stream error ({response.status_code}): {error_text[:500]}")
            raise ProviderError(response.status_code, error_text)

        return ProviderStream(response, client, call.model)
