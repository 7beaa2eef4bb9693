"""
Configuration management for the ticket routing webhook.

Uses Pydantic Settings for type-safe configuration. Every value is optional
at import time so the service can boot and report itself as not ready.
"""
from functools import lru_cache
from typing import ClassVar, Dict, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service
    service_name: str = "ticket-routing-webhook"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # ClickUp (reference data + ticket records)
    clickup_api_token: Optional[str] = None
    clickup_team_id: Optional[str] = None
    clickup_api_base: str = "https://api.clickup.com/api/v2"
    clickup_timeout_seconds: float = 10.0

    customers_list_id: str = "901321549787"
    units_list_id: str = "901321549939"
    market_ownership_list_id: str = "901321517062"

    customer_key_field_id: str = "8f687ebc-073d-48c6-ba25-1cae9d16ca3e"
    unit_key_field_id: str = "1ee003c2-a0f4-4b03-a39e-81ff13ca244e"

    # Webhook authentication
    webhook_hmac_secret: Optional[str] = None

    # Routing
    default_cx_user_id: Optional[str] = None
    assign_fallback_cx_owner: bool = True

    # Rate limiting (off by default)
    enable_rate_limiting: bool = False
    rate_limit_burst: int = 10
    rate_limit_sustain: float = 2.0
    rate_limit_window_seconds: float = 1.0
    rate_limit_idle_seconds: float = 60.0

    # Replay protection
    replay_ttl_seconds: float = 600.0
    sweep_interval_seconds: float = 60.0

    # Security alerting
    alert_failure_threshold: int = 20
    alert_window_seconds: float = 300.0
    alert_cooldown_seconds: float = 900.0
    alert_timeout_seconds: float = 5.0
    slack_webhook_url: Optional[str] = None
    slack_alert_channel: Optional[str] = None

    # Env var name -> attribute for readiness
    REQUIRED_FOR_READY: ClassVar[Dict[str, str]] = {
        "CLICKUP_API_TOKEN": "clickup_api_token",
        "CLICKUP_TEAM_ID": "clickup_team_id",
        "WEBHOOK_HMAC_SECRET": "webhook_hmac_secret",
    }

    def missing_required(self) -> List[str]:
        """Names of required environment variables that are unset."""
        return [
            env_name
            for env_name, attr in self.REQUIRED_FOR_READY.items()
            if not getattr(self, attr)
        ]

    @property
    def fallback_cx_owner(self) -> Optional[str]:
        """CX owner used when no customer owner can be resolved."""
        if not self.assign_fallback_cx_owner:
            return None
        return self.default_cx_user_id or None

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
