"""
Supabase Client for Tenant Lookup

Handles:
- Caller authentication (JWT -> user)
- Organization and subscription plan lookup
- Usage log counting and inserts (ai_usage_logs)
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Protocol

import httpx

logger = logging.getLogger(__name__)

# PostgREST returns this header when Prefer: count=exact is set
CONTENT_RANGE_HEADER = "content-range"


class TenantLookupError(RuntimeError):
    """The tenant/usage store could not answer a query."""


class TenantDirectory(Protocol):
    """Lookups the gateway needs from the tenant/billing store."""

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]: ...

    async def get_organization_id(self, user_id: str) -> Optional[str]: ...

    async def get_active_plan_tier(self, organization_id: str) -> Optional[str]: ...

    async def get_legacy_tier(self, organization_id: str) -> Optional[str]: ...

    async def count_usage(self, organization_id: str, feature: str, since: datetime) -> int: ...

    async def insert_usage_log(self, row: Dict[str, Any]) -> None: ...


class SupabaseTenantClient:
    """
    Client for the hosted tenant database (PostgREST + GoTrue).

    Provides:
    - Caller validation via /auth/v1/user
    - profiles / subscriptions / organizations / preschools lookups
    - ai_usage_logs count (HEAD + count=exact) and insert
    """

    def __init__(
        self,
        supabase_url: Optional[str],
        anon_key: Optional[str],
        service_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Supabase tenant client.

        Args:
            supabase_url: Supabase project URL
            anon_key: Public anon key (used as apikey for auth lookups)
            service_key: Service role key for server-side table access
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.supabase_url = (supabase_url or "").rstrip("/")
        self.anon_key = anon_key
        self.service_key = service_key or anon_key
        self.timeout = timeout_seconds
        self._transport = transport

        self.enabled = bool(self.supabase_url and self.service_key)
        if not self.enabled:
            logger.warning(
                "Supabase not configured - caller authentication will reject every request. "
                "Set SUPABASE_URL and SUPABASE_ANON_KEY / SUPABASE_SERVICE_ROLE_KEY."
            )
        else:
            logger.info(f"Supabase tenant client enabled: {self.supabase_url}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _table_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """GET rows from a table; raises TenantLookupError on any failure."""
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.supabase_url}/rest/v1/{table}",
                    headers=self._table_headers(),
                    params=params,
                )
        except httpx.HTTPError as e:
            raise TenantLookupError(f"{table} lookup failed: {e}") from e

        if response.status_code != 200:
            raise TenantLookupError(
                f"{table} lookup failed: {response.status_code} {response.text[:200]}"
            )

        data = response.json()
        return data if isinstance(data, list) else [data]

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a caller JWT to its auth user.

        Returns:
            User dict (with "id") if the token is valid, None otherwise
        """
        if not self.enabled or not access_token:
            return None

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.supabase_url}/auth/v1/user",
                    headers={
                        "apikey": self.anon_key or self.service_key,
                        "Authorization": f"Bearer {access_token}",
                    },
                )
        except httpx.TimeoutException:
            logger.error("Supabase auth lookup timeout")
            return None
        except httpx.HTTPError as e:
            logger.error(f"Supabase auth lookup error: {e}")
            return None

        if response.status_code != 200:
            logger.info(f"Caller token rejected by auth service: {response.status_code}")
            return None

        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user

    async def get_organization_id(self, user_id: str) -> Optional[str]:
        """Organization of a user from their profile (organization_id, then preschool_id)."""
        rows = await self._select(
            "profiles",
            {"select": "id,organization_id,preschool_id", "id": f"eq.{user_id}", "limit": "1"},
        )
        if not rows:
            return None
        profile = rows[0]
        return profile.get("organization_id") or profile.get("preschool_id") or None

    async def get_active_plan_tier(self, organization_id: str) -> Optional[str]:
        """Plan tier label of the most recent active subscription, if any."""
        rows = await self._select(
            "subscriptions",
            {
                "select": "status,subscription_plans!inner(tier)",
                "school_id": f"eq.{organization_id}",
                "status": "eq.active",
                "order": "created_at.desc",
                "limit": "1",
            },
        )
        if not rows:
            return None

        plans = rows[0].get("subscription_plans")
        # Embedded resource comes back as an object or a one-element list
        if isinstance(plans, list):
            plans = plans[0] if plans else None
        if isinstance(plans, dict) and plans.get("tier"):
            return str(plans["tier"])
        return None

    async def get_legacy_tier(self, organization_id: str) -> Optional[str]:
        """Tier from legacy columns (organizations.plan_tier, then preschools.subscription_tier)."""
        rows = await self._select(
            "organizations",
            {"select": "plan_tier", "id": f"eq.{organization_id}", "limit": "1"},
        )
        if rows and rows[0].get("plan_tier"):
            return str(rows[0]["plan_tier"])

        rows = await self._select(
            "preschools",
            {"select": "subscription_tier", "id": f"eq.{organization_id}", "limit": "1"},
        )
        if rows and rows[0].get("subscription_tier"):
            return str(rows[0]["subscription_tier"])

        return None

    async def count_usage(self, organization_id: str, feature: str, since: datetime) -> int:
        """
        Count usage log rows for (organization, feature) since a timestamp.

        Uses HEAD with Prefer: count=exact so no rows are transferred.
        """
        try:
            async with self._client() as client:
                response = await client.head(
                    f"{self.supabase_url}/rest/v1/ai_usage_logs",
                    headers=self._table_headers({"Prefer": "count=exact"}),
                    params={
                        "select": "id",
                        "organization_id": f"eq.{organization_id}",
                        "service_type": f"eq.{feature}",
                        "created_at": f"gte.{since.isoformat()}",
                    },
                )
        except httpx.HTTPError as e:
            raise TenantLookupError(f"Usage count failed: {e}") from e

        if response.status_code not in (200, 206):
            raise TenantLookupError(f"Usage count failed: {response.status_code}")

        return parse_content_range_total(response.headers.get(CONTENT_RANGE_HEADER))

    async def insert_usage_log(self, row: Dict[str, Any]) -> None:
        """Append one row to ai_usage_logs."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.supabase_url}/rest/v1/ai_usage_logs",
                    headers=self._table_headers({"Prefer": "return=minimal"}),
                    json=row,
                )
        except httpx.HTTPError as e:
            raise TenantLookupError(f"Usage insert failed: {e}") from e

        if response.status_code not in (200, 201, 204):
            raise TenantLookupError(
                f"Usage insert failed: {response.status_code} {response.text[:200]}"
            )


def parse_content_range_total(header: Optional[str]) -> int:
    """
    Extract the total from a PostgREST Content-Range header.

    Examples: "0-24/50" -> 50, "*/0" -> 0
    """
    if not header or "/" not in header:
        raise TenantLookupError(f"Missing or malformed Content-Range: {header!r}")
    total = header.rsplit("/", 1)[1]
    if total == "*":
        raise TenantLookupError("Store did not return an exact count")
    try:
        return int(total)
    except ValueError as e:
        raise TenantLookupError(f"Malformed Content-Range total: {header!r}") from e
