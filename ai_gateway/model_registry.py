"""
Model Registry - static catalog of the models the gateway can forward to.

Guarantees:
1. Every abstract model id ("fast", "balanced", "advanced") maps to exactly
   one versioned provider model id and one minimum subscription tier
2. Liberal input: family names ("haiku"), versioned ids and common typos
   all resolve to a catalog entry
3. Unrecognized spellings resolve to the configured default family instead
   of being rejected
"""

from typing import Optional, List, Dict
from dataclasses import dataclass

from ai_gateway.models import SubscriptionTier
from config.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    """One catalog entry."""
    id: str                      # abstract id used by callers and policy
    provider_model_id: str       # versioned id the provider expects
    family: str                  # "haiku", "sonnet", "opus"
    min_tier: SubscriptionTier
    description: str
    pricing_input: float = 3.00   # USD per 1M input tokens
    pricing_output: float = 15.00  # USD per 1M output tokens


# =============================================================================
# MODEL CATALOG - SINGLE SOURCE OF TRUTH
# =============================================================================

MODELS: List[ModelInfo] = [
    ModelInfo(
        id="fast",
        provider_model_id="claude-3-haiku-20240307",
        family="haiku",
        min_tier=SubscriptionTier.FREE,
        description="Haiku - fast, low-cost model available on every plan",
        pricing_input=0.25,
        pricing_output=1.25,
    ),
    ModelInfo(
        id="balanced",
        provider_model_id="claude-3-5-sonnet-20241022",
        family="sonnet",
        min_tier=SubscriptionTier.STARTER,
        description="Sonnet - balanced quality and latency",
        pricing_input=3.00,
        pricing_output=15.00,
    ),
    ModelInfo(
        id="advanced",
        provider_model_id="claude-3-opus-20240229",
        family="opus",
        min_tier=SubscriptionTier.PREMIUM,
        description="Opus - most capable model",
        pricing_input=15.00,
        pricing_output=75.00,
    ),
]

DEFAULT_FAMILY_MODEL = "balanced"

# Include common typos
_FAMILY_KEYWORDS: Dict[str, List[str]] = {
    "fast": ["haiku", "haku", "heiko", "fast"],
    "balanced": ["sonnet", "sonet", "balanced"],
    "advanced": ["opus", "advanced"],
}


class ModelCatalog:
    """
    Lookup over a fixed list of ModelInfo entries.

    Immutable after construction; a custom catalog can be injected through
    TierPolicy for tests.
    """

    def __init__(self, models: List[ModelInfo], default_model: str = DEFAULT_FAMILY_MODEL):
        self._models = tuple(models)
        self._by_id: Dict[str, ModelInfo] = {m.id: m for m in self._models}
        self._by_provider_id: Dict[str, ModelInfo] = {m.provider_model_id: m for m in self._models}
        if default_model not in self._by_id:
            raise ValueError(f"Default model '{default_model}' is not in the catalog")
        self.default_model = default_model

    def __iter__(self):
        return iter(self._models)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._by_id

    def get(self, model_id: str) -> ModelInfo:
        """Get a catalog entry by abstract id (KeyError if unknown)."""
        return self._by_id[model_id]

    def all_ids(self) -> List[str]:
        return list(self._by_id)

    def normalize(self, model_input: Optional[str]) -> str:
        """
        Resolve any caller-supplied model string to an abstract model id.

        Examples:
            >>> catalog.normalize("balanced")
            "balanced"
            >>> catalog.normalize("claude-3-haiku-20240307")
            "fast"
            >>> catalog.normalize("Claude Opus")
            "advanced"
            >>> catalog.normalize("gpt-4")
            "balanced"
        """
        if not model_input:
            return self.default_model

        if model_input in self._by_id:
            return model_input

        if model_input in self._by_provider_id:
            return self._by_provider_id[model_input].id

        model_lower = model_input.lower().strip()

        for model_id, keywords in _FAMILY_KEYWORDS.items():
            if model_id not in self._by_id:
                continue
            if any(keyword in model_lower for keyword in keywords):
                if model_lower != model_id:
                    logger.debug(f"Model resolved: '{model_input}' -> '{model_id}'")
                return model_id

        logger.info(
            f"Unrecognized model '{model_input}', using default family '{self.default_model}'"
        )
        return self.default_model

    def to_provider_model_id(self, model_id: str) -> str:
        return self.get(model_id).provider_model_id

    def calculate_cost(
        self,
        provider_model_id: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int]
    ) -> Optional[float]:
        """
        Estimated request cost in USD, or None when token counts are unknown.

        Args:
            provider_model_id: Versioned provider model id
            input_tokens: Input token count
            output_tokens: Output token count
        """
        if input_tokens is None or output_tokens is None:
            return None

        info = self._by_provider_id.get(provider_model_id)
        if info is None:
            # Unknown model - price as the default family
            logger.warning(f"Unknown model pricing: {provider_model_id}, using default family")
            info = self._by_id[self.default_model]

        input_cost = (input_tokens / 1_000_000) * info.pricing_input
        output_cost = (output_tokens / 1_000_000) * info.pricing_output
        return round(input_cost + output_cost, 6)

    def models_for_api(self) -> List[Dict]:
        """Catalog in list form for GET /v1/models."""
        return [
            {
                "id": model.id,
                "object": "model",
                "provider_model_id": model.provider_model_id,
                "min_tier": model.min_tier.value,
                "owned_by": "anthropic",
                "description": model.description,
            }
            for model in self._models
        ]


DEFAULT_CATALOG = ModelCatalog(MODELS)
