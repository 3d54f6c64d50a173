"""
Gateway settings, read once from the environment at startup.

Headers and per-request data never override these values; the dispatcher
receives a GatewaySettings instance and treats it as read-only.
"""

import os
import json
from dataclasses import dataclass
from typing import Optional, Tuple

from config.logging_config import get_logger

logger = get_logger(__name__)

_TRUTHY = ("true", "1", "yes", "on")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


@dataclass(frozen=True)
class GatewaySettings:
    """Immutable runtime configuration."""
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    default_model: str = "claude-3-5-sonnet-20241022"
    provider_timeout_seconds: float = 120.0
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None
    development_mode: bool = False
    environment: str = "development"
    usage_queue_size: int = 1000
    cors_origins: Tuple[str, ...] = ("*",)
    rate_limit_storage_uri: str = "memory://"

    def __post_init__(self):
        if self.development_mode and self.environment.lower() == "production":
            raise RuntimeError(
                "DEVELOPMENT_MODE must not be enabled when ENVIRONMENT=production"
            )

    @property
    def has_api_key(self) -> bool:
        return bool(self.anthropic_api_key)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """Build settings from environment variables."""
        cors_origins = tuple(json.loads(os.getenv("CORS_ORIGINS", '["*"]')))
        settings = cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com"),
            anthropic_version=os.getenv("ANTHROPIC_VERSION", "2023-06-01"),
            default_model=os.getenv("ANTHROPIC_MODEL_DEFAULT", "claude-3-5-sonnet-20241022"),
            provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "120")),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
            development_mode=_env_flag("DEVELOPMENT_MODE"),
            environment=os.getenv("ENVIRONMENT", "development"),
            usage_queue_size=int(os.getenv("USAGE_QUEUE_SIZE", "1000")),
            cors_origins=cors_origins,
            rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        )

        if settings.development_mode:
            logger.warning("DEVELOPMENT_MODE active - free tier quota relaxed for local testing")
        if not settings.has_api_key:
            logger.warning("ANTHROPIC_API_KEY not set - provider calls will fail with provider_error")

        return settings
