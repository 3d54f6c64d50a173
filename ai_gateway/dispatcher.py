"""
Gateway Dispatcher - one exchange request, one response.

Flow:
    resolve tier → model access → rate ceiling → monthly quota →
    normalize → provider relay (buffered or SSE) → usage log → response

All collaborators are injected, so tests build a dispatcher around an
in-memory tenant directory and a mocked provider transport.
"""

import json
import math
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, AsyncGenerator

from fastapi import HTTPException
from pydantic import ValidationError
from fastapi.responses import JSONResponse, StreamingResponse, Response

from ai_gateway.models import (
    ExchangeBase,
    ExchangeResponse,
    HealthRequest,
    CallerIdentity,
    SubscriptionTier,
    UNKNOWN_ACTION_ERROR_TYPES,
    exchange_request_adapter,
)
from ai_gateway.normalizer import Exchange, build_exchange, fallback_message
from ai_gateway.providers import (
    AnthropicRelay,
    ProviderCall,
    ProviderError,
    ProviderStream,
    ProviderStreamError,
    StreamDelta,
)
from ai_gateway.settings import GatewaySettings
from ai_gateway.tenant import (
    TenantDirectory,
    TierPolicy,
    RequestRateLimiter,
    UsageTracker,
    UsageLogEntry,
    STATUS_SUCCESS,
    STATUS_PROVIDER_ERROR,
    can_access_model,
    check_quota,
    default_model_for_tier,
    effective_model,
    resolve_tier,
)
from config.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 1500
GRADING_STREAM_MAX_TOKENS = 1000
BUFFERED_TEMPERATURE = 0.6
STREAMING_TEMPERATURE = 0.4

SSE_DONE = "data: [DONE]\n\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def parse_exchange_request(payload: Dict[str, Any]) -> ExchangeBase:
    """
    Decode a JSON body into its action variant.

    Raises:
        HTTPException: 400 "Unknown action" for a missing or unrecognized action,
            400 "Invalid request" for bad action-specific fields
    """
    try:
        return exchange_request_adapter.validate_python(payload)
    except ValidationError as e:
        errors = e.errors()
        if any(err["type"] in UNKNOWN_ACTION_ERROR_TYPES for err in errors):
            logger.info(f"Unknown action: {payload.get('action')!r}")
            raise HTTPException(status_code=400, detail={"error": "Unknown action"})
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid request",
                "details": [
                    {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                    for err in errors
                ],
            },
        )


class GatewayDispatcher:
    """Wires tier, policy, quota, normalizer, relay and usage logging together."""

    def __init__(
        self,
        settings: GatewaySettings,
        policy: TierPolicy,
        directory: TenantDirectory,
        relay: AnthropicRelay,
        tracker: UsageTracker,
        rate_limiter: Optional[RequestRateLimiter] = None
    ):
        self.settings = settings
        self.policy = policy
        self.directory = directory
        self.relay = relay
        self.tracker = tracker
        self.rate_limiter = rate_limiter or RequestRateLimiter()

    def health(self, caller: CallerIdentity) -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "hasApiKey": self.settings.has_api_key,
            "userId": caller.user_id,
        }

    async def dispatch(self, request: ExchangeBase, caller: CallerIdentity) -> Response:
        """
        Run one exchange for an authenticated caller.

        Raises:
            HTTPException: 403 model_access_denied, 429 rate_limited / quota_exceeded
        """
        if isinstance(request, HealthRequest):
            return JSONResponse(self.health(caller))

        tenant_id = caller.tenant_id or request.organization_id
        tier = await resolve_tier(self.directory, tenant_id)
        model_id = self._select_model(request, tier)

        self._check_rate(tenant_id or f"user:{caller.user_id}", tier)

        quota = await check_quota(self.directory, self.policy, tenant_id, request.feature, tier)
        logger.info(
            f"Exchange {request.action}: tenant={tenant_id or '-'} tier={tier.value} "
            f"model={model_id} quota={'allowed' if quota.allowed else 'denied'} "
            f"({quota.used if quota.used is not None else '-'}/{quota.limit if quota.limit is not None else '-'})"
        )
        if not quota.allowed:
            raise HTTPException(
                status_code=429,
                detail={
                    "error": "quota_exceeded",
                    "used": quota.used,
                    "limit": quota.limit,
                    "message": (
                        f"Monthly {request.feature} limit of {quota.limit} requests reached "
                        f"for the {tier.value} plan"
                    ),
                },
            )

        exchange = build_exchange(request)
        call = self._provider_call(request, exchange, model_id)

        if request.wants_stream:
            return await self._dispatch_stream(request, caller, tenant_id, exchange, call)
        return await self._dispatch_buffered(request, caller, tenant_id, exchange, call)

    def _select_model(self, request: ExchangeBase, tier: SubscriptionTier) -> str:
        """Abstract model id for this request; explicit disallowed models are refused."""
        if request.model:
            canonical = self.policy.catalog.normalize(request.model)
            if not can_access_model(self.policy, tier, canonical):
                available = default_model_for_tier(self.policy, tier)
                logger.info(f"Model '{request.model}' denied for tier '{tier.value}'")
                raise HTTPException(
                    status_code=403,
                    detail={
                        "error": "model_access_denied",
                        "message": (
                            f"Model '{request.model}' is not available on the {tier.value} plan. "
                            f"Use '{available}' or upgrade your plan."
                        ),
                        "tier": tier.value,
                        "available_model": available,
                    },
                )
            return canonical

        return effective_model(
            self.policy, tier, None, tenant_default_model=self.settings.default_model
        )

    def _check_rate(self, key: str, tier: SubscriptionTier) -> None:
        rpm_limit = self.policy.quota_for(tier).rpm_limit
        allowed, retry_after = self.rate_limiter.allow(key, rpm_limit)
        if allowed:
            return
        logger.warning(f"Rate limit hit for {key} ({rpm_limit}/min)")
        raise HTTPException(
            status_code=429,
            detail={
                "error": "rate_limited",
                "message": f"Too many requests: the {tier.value} plan allows {rpm_limit} per minute",
                "limit": rpm_limit,
            },
            headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
        )

    def _provider_call(self, request: ExchangeBase, exchange: Exchange, model_id: str) -> ProviderCall:
        streaming = request.wants_stream
        if request.max_tokens:
            max_tokens = request.max_tokens
        elif request.action == "grading_assistance_stream":
            max_tokens = GRADING_STREAM_MAX_TOKENS
        else:
            max_tokens = DEFAULT_MAX_TOKENS

        if request.temperature is not None:
            temperature = request.temperature
        else:
            temperature = STREAMING_TEMPERATURE if streaming else BUFFERED_TEMPERATURE

        return ProviderCall(
            model=self.policy.catalog.to_provider_model_id(model_id),
            system=exchange.system_prompt,
            messages=exchange.messages,
            max_tokens=max_tokens,
            temperature=temperature,
            tools=request.tools or None,
            tool_choice=request.tool_choice,
        )

    def _track(
        self,
        request: ExchangeBase,
        caller: CallerIdentity,
        tenant_id: Optional[str],
        call: ProviderCall,
        output: str,
        status: str,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None
    ) -> None:
        self.tracker.track_async(UsageLogEntry(
            user_id=caller.user_id,
            tenant_id=tenant_id,
            feature=request.feature,
            provider_model_id=call.model,
            system_prompt=call.system,
            input_text=json.dumps([m.to_provider() for m in call.messages]),
            output_text=output,
            status=status,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        ))

    async def _dispatch_buffered(
        self,
        request: ExchangeBase,
        caller: CallerIdentity,
        tenant_id: Optional[str],
        exchange: Exchange,
        call: ProviderCall
    ) -> JSONResponse:
        start = time.time()
        try:
            result = await self.relay.call(call)
        except ProviderError as e:
            logger.error(
                f"Provider error for {request.action} after {time.time() - start:.2f}s: "
                f"status={e.status_code} tools={len(call.tools or [])}"
            )
            self._track(request, caller, tenant_id, call, e.body, STATUS_PROVIDER_ERROR)
            response = ExchangeResponse(
                content=fallback_message(request),
                provider_error={"status": e.status_code, "details": e.body},
            )
            return JSONResponse(response.to_body())

        logger.info(f"Provider latency for {request.action}: {time.time() - start:.2f}s")
        if result.tool_calls and not result.content.strip():
            logger.info(f"Model returned {len(result.tool_calls)} tool call(s) only; caller executes them")

        usage = result.usage
        self._track(
            request, caller, tenant_id, call, result.content, STATUS_SUCCESS,
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
        )

        response = ExchangeResponse(
            content=result.content,
            usage=usage,
            cost=None,
            tool_calls=result.tool_calls or None,
            raw_content=result.raw_content or None,
            stop_reason=result.stop_reason,
        )
        return JSONResponse(response.to_body())

    async def _dispatch_stream(
        self,
        request: ExchangeBase,
        caller: CallerIdentity,
        tenant_id: Optional[str],
        exchange: Exchange,
        call: ProviderCall
    ) -> Response:
        try:
            stream = await self.relay.open_stream(call)
        except ProviderError as e:
            logger.error(f"Provider stream could not start for {request.action}: status={e.status_code}")
            self._track(request, caller, tenant_id, call, e.body, STATUS_PROVIDER_ERROR)
            return JSONResponse(
                status_code=502,
                content={"error": "provider_error", "status": e.status_code, "details": e.body},
            )

        return StreamingResponse(
            self._relay_events(request, caller, tenant_id, call, stream),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    async def _relay_events(
        self,
        request: ExchangeBase,
        caller: CallerIdentity,
        tenant_id: Optional[str],
        call: ProviderCall,
        stream: ProviderStream
    ) -> AsyncGenerator[str, None]:
        """Re-emit provider events as caller SSE, in order, one at a time."""
        start = time.time()
        status = STATUS_SUCCESS
        try:
            try:
                async for event in stream.events():
                    if isinstance(event, StreamDelta):
                        yield encode_sse({"type": "delta", "text": event.text})
                        continue

                    final = {"type": "final", "text": event.text}
                    if request.action == "grading_assistance_stream":
                        final["feedback"] = event.text
                    yield encode_sse(final)

            except ProviderStreamError as e:
                status = STATUS_PROVIDER_ERROR
                logger.error(f"Provider stream failed mid-way for {request.action}: {e}")
                yield encode_sse({"type": "error", "error": "provider_error", "message": str(e)})

            yield SSE_DONE

        finally:
            # Runs on completion and on caller disconnect
            await stream.aclose()
            logger.info(f"Stream for {request.action} closed after {time.time() - start:.2f}s ({status})")
            self._track(
                request, caller, tenant_id, call, stream.text, status,
                input_tokens=stream.input_tokens,
                output_tokens=stream.output_tokens,
            )
