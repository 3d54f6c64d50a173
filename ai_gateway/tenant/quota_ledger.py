"""
Pre-request Quota Enforcement for the AI Gateway.

Monthly allowance:
- Usage is the number of ai_usage_logs rows for (tenant, feature) since the
  first of the current UTC month, so the ledger resets itself at the
  calendar boundary and never drifts from the log
- Enterprise (no limit) and individual callers (no tenant) are always allowed
- Store failures fail OPEN: the ledger is an accounting control

Per-minute ceiling:
- Moving one-minute window per tenant (or per user for individual callers)
  holding at most the tier rpm, via the `limits` library
"""

import time
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from limits import RateLimitItemPerMinute
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter

from ai_gateway.models import SubscriptionTier
from .access_policy import TierPolicy
from .client import TenantDirectory

logger = logging.getLogger(__name__)


@dataclass
class QuotaCheckResult:
    """Result of a pre-request quota check."""
    allowed: bool
    used: Optional[int] = None
    limit: Optional[int] = None
    reason: Optional[str] = None


def month_start(now: Optional[datetime] = None) -> datetime:
    """First instant of the current calendar month in UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def check_quota(
    directory: TenantDirectory,
    policy: TierPolicy,
    tenant_id: Optional[str],
    feature: str,
    tier: SubscriptionTier,
    now: Optional[datetime] = None
) -> QuotaCheckResult:
    """
    Check if a tenant can make another request for a feature this month.

    Args:
        directory: Tenant/usage store
        policy: Tier policy holding the allowances
        tenant_id: Billing tenant (None for individual callers)
        feature: Billing feature (e.g. "general_assistance")
        tier: Tenant's resolved tier
        now: Clock override for tests

    Returns:
        QuotaCheckResult with allowed=True/False and used/limit when counted
    """
    if not tenant_id:
        return QuotaCheckResult(allowed=True, reason="individual caller")

    limit = policy.quota_for(tier).limit_for(feature)
    if limit is None:
        return QuotaCheckResult(allowed=True, reason="unlimited tier")

    try:
        used = await directory.count_usage(tenant_id, feature, month_start(now))
    except Exception as e:
        logger.error(f"Usage count failed for tenant {tenant_id} ({feature}), allowing request: {e}")
        return QuotaCheckResult(allowed=True, reason="usage lookup failed")

    if used >= limit:
        logger.warning(f"Quota exceeded for tenant {tenant_id}: {feature} {used}/{limit}")
        return QuotaCheckResult(allowed=False, used=used, limit=limit, reason="quota_exceeded")

    return QuotaCheckResult(allowed=True, used=used, limit=limit)


class RequestRateLimiter:
    """
    Per-minute request ceiling keyed by tenant (or user for individual callers).

    Moving window over the `limits` storage backend; "memory://" keeps the
    windows in process, a redis:// URI shares them across instances.
    """

    def __init__(self, storage_uri: str = "memory://", storage: Optional[Storage] = None):
        self.storage = storage or storage_from_string(storage_uri)
        self._limiter = MovingWindowRateLimiter(self.storage)

    def allow(self, key: str, rpm_limit: int) -> Tuple[bool, float]:
        """
        Count one request against the key's window.

        Returns:
            (allowed, retry_after_seconds)
        """
        item = RateLimitItemPerMinute(rpm_limit)
        if self._limiter.hit(item, key):
            return True, 0.0

        reset_time, _ = self._limiter.get_window_stats(item, key)
        return False, max(0.0, reset_time - time.time())
