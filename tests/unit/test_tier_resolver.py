"""
Unit Tests for tier resolution

Tests the resolution chain (active plan → legacy tier → free) and the
plan label normalization table.
"""

import pytest

from ai_gateway.models import SubscriptionTier
from ai_gateway.tenant import resolve_tier, normalize_tier


@pytest.mark.parametrize("label,expected", [
    ("free", SubscriptionTier.FREE),
    ("parent_starter", SubscriptionTier.STARTER),
    ("Starter", SubscriptionTier.STARTER),
    ("parent_plus", SubscriptionTier.PREMIUM),
    ("pro", SubscriptionTier.PREMIUM),
    ("premium", SubscriptionTier.PREMIUM),
    (" enterprise ", SubscriptionTier.ENTERPRISE),
    ("school_legacy_gold", SubscriptionTier.FREE),
    (None, SubscriptionTier.FREE),
])
def test_normalize_tier(label, expected):
    assert normalize_tier(label) == expected


async def test_no_tenant_is_free(directory):
    assert await resolve_tier(directory, None) == SubscriptionTier.FREE


async def test_active_plan_wins(directory):
    directory.plan_tiers["org-a"] = "enterprise"
    directory.legacy_tiers["org-a"] = "starter"
    assert await resolve_tier(directory, "org-a") == SubscriptionTier.ENTERPRISE


async def test_legacy_tier_used_without_active_plan(directory):
    directory.legacy_tiers["org-b"] = "pro"
    assert await resolve_tier(directory, "org-b") == SubscriptionTier.PREMIUM


async def test_unknown_tenant_is_free(directory):
    assert await resolve_tier(directory, "org-missing") == SubscriptionTier.FREE


async def test_lookup_failure_is_free(directory):
    directory.plan_tiers["org-c"] = "premium"
    directory.fail_lookups = True
    assert await resolve_tier(directory, "org-c") == SubscriptionTier.FREE
