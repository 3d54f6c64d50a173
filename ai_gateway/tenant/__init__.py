"""
Tenant-Aware Policy for the AI Gateway

Provides per-tenant:
- Subscription tier resolution
- Model access control
- Monthly quota and per-minute rate ceiling
- Usage logging for billing
"""

from .client import SupabaseTenantClient, TenantDirectory, TenantLookupError
from .tier_resolver import resolve_tier, normalize_tier
from .access_policy import (
    TierPolicy,
    TierQuota,
    can_access_model,
    default_model_for_tier,
    effective_model
)
from .quota_ledger import QuotaCheckResult, RequestRateLimiter, check_quota, month_start
from .usage_tracker import (
    UsageTracker,
    UsageLogEntry,
    STATUS_SUCCESS,
    STATUS_PROVIDER_ERROR
)

__all__ = [
    # Client
    'SupabaseTenantClient',
    'TenantDirectory',
    'TenantLookupError',
    # Tier
    'resolve_tier',
    'normalize_tier',
    # Policy
    'TierPolicy',
    'TierQuota',
    'can_access_model',
    'default_model_for_tier',
    'effective_model',
    # Quota
    'QuotaCheckResult',
    'RequestRateLimiter',
    'check_quota',
    'month_start',
    # Usage Tracking
    'UsageTracker',
    'UsageLogEntry',
    'STATUS_SUCCESS',
    'STATUS_PROVIDER_ERROR'
]
