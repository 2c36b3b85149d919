"""
Configuration management for the paysync webhook service.

Loads settings from .env via pydantic-settings.

Security notes:
    - Provider secrets are never logged
    - validate_production_settings() enforces strict CORS and fail-closed
      provider configuration in production
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/paysync.db"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    upstream_timeout_seconds: float = 10.0   # bound on every external call
    dispatch_claim_ttl_seconds: int = 300    # abandoned notification claims expire

    # ── Monobank (asymmetric X-Sign) ────────────────────────────────
    mono_token: str = ""
    mono_api_url: str = "https://api.monobank.ua"
    mono_pubkey_ttl_seconds: int = 6 * 60 * 60

    # ── Whitepay (shared-secret HMAC) ───────────────────────────────
    whitepay_webhook_secret: str = ""

    # ── Resend (access email) ───────────────────────────────────────
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com"
    email_from: str = ""
    email_subject_template: str = "D3 Education: access activated ({title})"

    # ── Product catalog (access link + template per tariff) ─────────
    tg_link_base: str = ""
    tg_link_ground: str = ""
    tg_link_foundation: str = ""
    resend_template_base: str = ""
    resend_template_ground: str = ""
    resend_template_foundation: str = ""

    # ── Manual resend ───────────────────────────────────────────────
    manual_email_secret: str = ""

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def product_catalog(self) -> dict[str, dict[str, str]]:
        """
        Static product table: product id -> title, access link, template.

        Titles are fixed; links and templates come from the environment so
        they can be rotated without a deploy.
        """
        return {
            "base": {
                "title": "База",
                "access_link": self.tg_link_base,
                "template": self.resend_template_base,
            },
            "ground": {
                "title": "Ґрунт",
                "access_link": self.tg_link_ground,
                "template": self.resend_template_ground,
            },
            "foundation": {
                "title": "Фундамент",
                "access_link": self.tg_link_foundation,
                "template": self.resend_template_foundation,
            },
        }

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. In production a missing provider secret
        is a hard error; elsewhere it is only a warning and the affected
        webhook rejects every delivery.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.mono_token:
                raise ValueError(
                    "MONO_TOKEN must be set in production. "
                    "It is required to fetch the monobank signing key."
                )
            if not self.whitepay_webhook_secret:
                raise ValueError(
                    "WHITEPAY_WEBHOOK_SECRET must be set in production. "
                    "Unsigned Whitepay webhooks are never accepted."
                )
            if not self.resend_api_key or not self.email_from:
                raise ValueError(
                    "RESEND_API_KEY and EMAIL_FROM must be set in production. "
                    "Paid orders cannot be notified without them."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if not self.mono_token:
                warnings.append("MONO_TOKEN not set (monobank webhooks will fail)")
            if not self.whitepay_webhook_secret:
                warnings.append("WHITEPAY_WEBHOOK_SECRET not set (whitepay webhooks rejected)")
            if not self.resend_api_key:
                warnings.append("RESEND_API_KEY not set (access emails disabled)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
