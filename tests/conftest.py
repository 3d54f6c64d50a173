"""
Shared fixtures for the AI Gateway tests.

- InMemoryTenantDirectory: tenant/usage store kept in dicts and lists
- ProviderStub: httpx.MockTransport standing in for the Messages API
"""

import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import httpx
import pytest
from fastapi.testclient import TestClient

from ai_gateway.settings import GatewaySettings
from ai_gateway.tenant import TenantLookupError


# ============================================================================
# Tenant directory
# ============================================================================

class InMemoryTenantDirectory:
    """TenantDirectory backed by plain Python containers."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}            # token -> user
        self.organizations: Dict[str, Optional[str]] = {}     # user_id -> org
        self.plan_tiers: Dict[str, str] = {}                  # org -> active plan tier
        self.legacy_tiers: Dict[str, str] = {}                # org -> legacy tier
        self.usage_rows: List[Dict[str, Any]] = []
        self.fail_lookups = False
        self.fail_counts = False
        self.fail_inserts = False

    def add_caller(self, token: str, user_id: str, organization_id: Optional[str] = None) -> None:
        self.users[token] = {"id": user_id, "email": f"{user_id}@example.org"}
        self.organizations[user_id] = organization_id

    def seed_usage(self, organization_id: str, feature: str, count: int, when: Optional[datetime] = None) -> None:
        created_at = (when or datetime.now(timezone.utc)).isoformat()
        for _ in range(count):
            self.usage_rows.append({
                "organization_id": organization_id,
                "service_type": feature,
                "status": "success",
                "created_at": created_at,
            })

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        return self.users.get(access_token)

    async def get_organization_id(self, user_id: str) -> Optional[str]:
        if self.fail_lookups:
            raise TenantLookupError("profiles lookup failed: store offline")
        return self.organizations.get(user_id)

    async def get_active_plan_tier(self, organization_id: str) -> Optional[str]:
        if self.fail_lookups:
            raise TenantLookupError("subscriptions lookup failed: store offline")
        return self.plan_tiers.get(organization_id)

    async def get_legacy_tier(self, organization_id: str) -> Optional[str]:
        if self.fail_lookups:
            raise TenantLookupError("organizations lookup failed: store offline")
        return self.legacy_tiers.get(organization_id)

    async def count_usage(self, organization_id: str, feature: str, since: datetime) -> int:
        if self.fail_counts:
            raise TenantLookupError("Usage count failed: store offline")
        return sum(
            1 for row in self.usage_rows
            if row["organization_id"] == organization_id
            and row["service_type"] == feature
            and datetime.fromisoformat(row["created_at"]) >= since
        )

    async def insert_usage_log(self, row: Dict[str, Any]) -> None:
        if self.fail_inserts:
            raise TenantLookupError("Usage insert failed: 500")
        self.usage_rows.append(row)

    def logged(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rows written by the gateway (seeded rows carry no ai_model_used)."""
        return [
            row for row in self.usage_rows
            if "ai_model_used" in row and (status is None or row["status"] == status)
        ]


# ============================================================================
# Provider stub
# ============================================================================

def message_response(
    text: str = "Hello from the model",
    tool_uses: Optional[List[Dict[str, Any]]] = None,
    stop_reason: str = "end_turn",
    usage: Optional[Dict[str, int]] = None
) -> Dict[str, Any]:
    """Messages API JSON body."""
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    for tool_use in tool_uses or []:
        content.append({"type": "tool_use", **tool_use})
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": content,
        "stop_reason": stop_reason,
        "usage": usage or {"input_tokens": 12, "output_tokens": 34},
    }


def sse_body(deltas: List[str], input_tokens: int = 10, output_tokens: int = 20, error: Optional[str] = None) -> bytes:
    """Provider event stream: message_start, one text_delta per chunk, message_delta, message_stop."""
    events = [
        {"type": "message_start", "message": {"id": "msg_test", "usage": {"input_tokens": input_tokens, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    for delta in deltas:
        events.append({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": delta}})
    if error:
        events.append({"type": "error", "error": {"type": "overloaded_error", "message": error}})
    else:
        events.append({"type": "content_block_stop", "index": 0})
        events.append({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}})
        events.append({"type": "message_stop"})

    lines = []
    for event in events:
        lines.append(f"event: {event['type']}\ndata: {json.dumps(event)}\n\n")
    return "".join(lines).encode()


class ProviderStub:
    """
    Records provider requests and replays a configured response.

    Set `json_body` for buffered calls, `stream_body` for streaming calls,
    or `status_code` + `error_body` for failures.
    """

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.headers: List[httpx.Headers] = []
        self.json_body: Dict[str, Any] = message_response()
        self.stream_body: bytes = sse_body(["Hel", "lo ", "there"])
        self.status_code = 200
        self.error_body = '{"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}'
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)

        if self.status_code != 200:
            return httpx.Response(self.status_code, text=self.error_body)
        if body.get("stream"):
            return httpx.Response(
                200,
                content=self.stream_body,
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(200, json=self.json_body)

    def reply(self, text: str = "Hello from the model", **kwargs) -> None:
        self.json_body = message_response(text, **kwargs)

    def stream(self, deltas: List[str], **kwargs) -> None:
        self.stream_body = sse_body(deltas, **kwargs)

    def fail(self, status_code: int, error_body: Optional[str] = None) -> None:
        self.status_code = status_code
        if error_body is not None:
            self.error_body = error_body

    @property
    def last_request(self) -> Dict[str, Any]:
        return self.requests[-1]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def directory():
    """Tenant store with one starter-tier caller and one individual caller."""
    store = InMemoryTenantDirectory()
    store.add_caller("token-starter", "user-starter", "org-starter")
    store.plan_tiers["org-starter"] = "starter"
    store.add_caller("token-individual", "user-individual", None)
    return store


@pytest.fixture
def settings():
    return GatewaySettings(
        anthropic_api_key="sk-ant-test-key-000000",
        anthropic_base_url="https://provider.test",
        usage_queue_size=100,
    )


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def app(settings, directory, provider):
    from ai_gateway.main import create_app

    return create_app(settings=settings, directory=directory, provider_transport=provider.transport)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Bearer header for a seeded caller token."""
    def _headers(token: str = "token-starter") -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
    return _headers
