"""
Tier Resolver - maps a billing tenant to its subscription tier.

Resolution order:
1. No tenant -> free
2. Most recent active subscription's plan tier
3. Legacy tier columns on the organization / preschool record
4. free
"""

import logging
from typing import Optional

from ai_gateway.models import SubscriptionTier
from .client import TenantDirectory, TenantLookupError

logger = logging.getLogger(__name__)

# Historical plan labels collapse onto the four canonical tiers
PLAN_TIER_ALIASES = {
    "free": SubscriptionTier.FREE,
    "parent_starter": SubscriptionTier.STARTER,
    "starter": SubscriptionTier.STARTER,
    "parent_plus": SubscriptionTier.PREMIUM,
    "premium": SubscriptionTier.PREMIUM,
    "pro": SubscriptionTier.PREMIUM,
    "enterprise": SubscriptionTier.ENTERPRISE,
}


def normalize_tier(plan_label: Optional[str]) -> SubscriptionTier:
    """Map a plan label (current or legacy) to a SubscriptionTier; unknown -> free."""
    if not plan_label:
        return SubscriptionTier.FREE
    return PLAN_TIER_ALIASES.get(plan_label.strip().lower(), SubscriptionTier.FREE)


async def resolve_tier(directory: TenantDirectory, tenant_id: Optional[str]) -> SubscriptionTier:
    """
    Determine the tenant's current subscription tier.

    Never raises: store failures resolve to free.
    """
    if not tenant_id:
        return SubscriptionTier.FREE

    try:
        plan_tier = await directory.get_active_plan_tier(tenant_id)
        if plan_tier:
            return normalize_tier(plan_tier)

        legacy_tier = await directory.get_legacy_tier(tenant_id)
        if legacy_tier:
            return normalize_tier(legacy_tier)

    except TenantLookupError as e:
        logger.warning(f"Tier lookup failed for tenant {tenant_id}, using free: {e}")

    return SubscriptionTier.FREE
