"""
Unit Tests for the model catalog

Tests normalization of caller spellings, provider id mapping and the
per-model cost estimate.
"""

import pytest

from ai_gateway.model_registry import DEFAULT_CATALOG, MODELS, ModelCatalog, ModelInfo
from ai_gateway.models import SubscriptionTier


class TestNormalize:

    @pytest.mark.parametrize("model_input,expected", [
        ("fast", "fast"),
        ("balanced", "balanced"),
        ("advanced", "advanced"),
        ("claude-3-haiku-20240307", "fast"),
        ("claude-3-5-sonnet-20241022", "balanced"),
        ("Claude Opus", "advanced"),
        ("haku", "fast"),
        ("gpt-4", "balanced"),
        (None, "balanced"),
        ("", "balanced"),
    ])
    def test_normalize(self, model_input, expected):
        assert DEFAULT_CATALOG.normalize(model_input) == expected

    def test_every_model_has_one_provider_id_and_tier(self):
        provider_ids = [m.provider_model_id for m in MODELS]
        assert len(provider_ids) == len(set(provider_ids))
        for model in MODELS:
            assert DEFAULT_CATALOG.to_provider_model_id(model.id) == model.provider_model_id
            assert isinstance(model.min_tier, SubscriptionTier)

    def test_unknown_default_is_rejected(self):
        with pytest.raises(ValueError):
            ModelCatalog(MODELS, default_model="turbo")

    def test_custom_catalog(self):
        catalog = ModelCatalog([
            ModelInfo(
                id="fast",
                provider_model_id="claude-test-fast",
                family="haiku",
                min_tier=SubscriptionTier.FREE,
                description="test",
            ),
        ], default_model="fast")
        assert catalog.normalize("sonnet") == "fast"
        assert "balanced" not in catalog
        assert catalog.all_ids() == ["fast"]


class TestCost:

    def test_cost_per_million_tokens(self):
        # 1M input at 3.00 + 1M output at 15.00
        cost = DEFAULT_CATALOG.calculate_cost("claude-3-5-sonnet-20241022", 1_000_000, 1_000_000)
        assert cost == pytest.approx(18.0)

    def test_unknown_token_counts_give_no_cost(self):
        assert DEFAULT_CATALOG.calculate_cost("claude-3-haiku-20240307", None, 10) is None

    def test_unknown_model_priced_as_default_family(self):
        known = DEFAULT_CATALOG.calculate_cost("claude-3-5-sonnet-20241022", 1000, 1000)
        assert DEFAULT_CATALOG.calculate_cost("claude-unknown", 1000, 1000) == known


def test_models_for_api():
    data = DEFAULT_CATALOG.models_for_api()
    assert [entry["id"] for entry in data] == ["fast", "balanced", "advanced"]
    assert data[2]["min_tier"] == "premium"
    assert data[0]["provider_model_id"] == "claude-3-haiku-20240307"
