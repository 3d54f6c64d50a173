"""
Tier Policy and Model Access Control.

Decides which catalog models a subscription tier may use and which model
to fall back to. All tables live in an immutable TierPolicy value that is
built once at startup and passed to the dispatcher; tests build their own.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from ai_gateway.model_registry import DEFAULT_CATALOG, ModelCatalog
from ai_gateway.models import SubscriptionTier, TIER_ORDER
from config.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TierQuota:
    """Monthly allowance and per-minute ceiling for one tier."""
    monthly_requests: Optional[int]          # None = unlimited
    rpm_limit: int
    feature_limits: Mapping[str, Optional[int]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def unlimited(self) -> bool:
        return self.monthly_requests is None

    def limit_for(self, feature: str) -> Optional[int]:
        """Monthly allowance for a feature (None = unlimited)."""
        if feature in self.feature_limits:
            return self.feature_limits[feature]
        return self.monthly_requests


DEFAULT_QUOTAS = {
    SubscriptionTier.FREE: TierQuota(monthly_requests=50, rpm_limit=5),
    SubscriptionTier.STARTER: TierQuota(monthly_requests=500, rpm_limit=15),
    SubscriptionTier.PREMIUM: TierQuota(monthly_requests=2500, rpm_limit=30),
    SubscriptionTier.ENTERPRISE: TierQuota(monthly_requests=None, rpm_limit=60),
}

DEVELOPMENT_FREE_QUOTA = TierQuota(monthly_requests=10000, rpm_limit=100)

DEFAULT_TIER_MODELS = {
    SubscriptionTier.FREE: "fast",
    SubscriptionTier.STARTER: "balanced",
    SubscriptionTier.PREMIUM: "balanced",
    SubscriptionTier.ENTERPRISE: "balanced",
}


@dataclass(frozen=True)
class TierPolicy:
    """Static access and quota configuration."""
    catalog: ModelCatalog
    quotas: Mapping[SubscriptionTier, TierQuota]
    default_models: Mapping[SubscriptionTier, str]

    def __post_init__(self):
        # Freeze whatever mappings the caller passed in
        object.__setattr__(self, "quotas", MappingProxyType(dict(self.quotas)))
        object.__setattr__(self, "default_models", MappingProxyType(dict(self.default_models)))

        for tier in TIER_ORDER:
            if tier not in self.quotas:
                raise ValueError(f"No quota configured for tier '{tier.value}'")
            default = self.default_models.get(tier)
            if default is None:
                raise ValueError(f"No default model configured for tier '{tier.value}'")
            if not can_access_model(self, tier, default):
                raise ValueError(
                    f"Default model '{default}' is not accessible to tier '{tier.value}'"
                )

    @classmethod
    def default(cls) -> "TierPolicy":
        return cls(
            catalog=DEFAULT_CATALOG,
            quotas=DEFAULT_QUOTAS,
            default_models=DEFAULT_TIER_MODELS,
        )

    @classmethod
    def development(cls) -> "TierPolicy":
        """Production tables with the free tier relaxed for local testing."""
        quotas = dict(DEFAULT_QUOTAS)
        quotas[SubscriptionTier.FREE] = DEVELOPMENT_FREE_QUOTA
        return cls(
            catalog=DEFAULT_CATALOG,
            quotas=quotas,
            default_models=DEFAULT_TIER_MODELS,
        )

    def quota_for(self, tier: SubscriptionTier) -> TierQuota:
        return self.quotas[tier]


def can_access_model(policy: TierPolicy, tier: SubscriptionTier, model_id: str) -> bool:
    """
    Check whether a tier may use a model.

    The model string is normalized first, so family names and versioned
    provider ids are accepted.
    """
    canonical = policy.catalog.normalize(model_id)
    required = policy.catalog.get(canonical).min_tier
    return tier.includes(required)


def default_model_for_tier(policy: TierPolicy, tier: SubscriptionTier) -> str:
    return policy.default_models[tier]


def effective_model(
    policy: TierPolicy,
    tier: SubscriptionTier,
    requested_model: Optional[str],
    tenant_default_model: Optional[str] = None
) -> str:
    """
    Pick the abstract model id a request will actually use.

    Args:
        policy: Tier policy
        tier: Caller's resolved tier
        requested_model: Model named by the caller (may be None)
        tenant_default_model: Model to use when the caller named none

    Returns:
        The requested (or default) model when the tier may use it, otherwise
        the tier's default model.
    """
    canonical = policy.catalog.normalize(requested_model or tenant_default_model)

    if can_access_model(policy, tier, canonical):
        return canonical

    fallback = default_model_for_tier(policy, tier)
    logger.info(
        f"Model '{canonical}' not available on tier '{tier.value}', using '{fallback}'"
    )
    return fallback
