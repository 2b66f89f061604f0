"""
Lead Runner Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class LeadRunnerSettings(BaseSettings):
    """
    Lead runner configuration with validation.

    All settings can be overridden via environment variables
    (case-insensitive, no prefix: DATA_DIR, JOBS_DIR, ...).
    """

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, extra="ignore")

    # === Environment & Security ===
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    runner_api_secret: Optional[str] = Field(
        default=None,
        min_length=16,
        description="API authentication secret (min 16 chars)"
    )
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins"
    )

    # === Storage ===
    data_dir: Path = Field(default=Path("data"), description="Directory for output CSV files")
    jobs_dir: Path = Field(default=Path("all_jobs"), description="Directory for job records")
    cookies_dir: Path = Field(default=Path("cookies"), description="Directory for cookie files")
    job_retention_days: int = Field(
        default=3,
        ge=1,
        le=365,
        description="Job records older than this are purged at startup"
    )

    # === Browser ===
    user_data_dir: Path = Field(default=Path("user_data"), description="Persistent browser profile")
    extensions_dir: Path = Field(default=Path("extensions"), description="Unpacked sidebar extensions")
    headless: bool = Field(default=False, description="Run Chromium headless")
    block_resources: bool = Field(
        default=True,
        description="Abort image/media/font requests to speed up rendering"
    )

    # === Pacing ===
    speed_scale: float = Field(
        default=1.0,
        gt=0,
        le=10,
        description="Global multiplier applied to every pacing wait"
    )
    lead_list_timeout_ms: int = Field(default=10_000, ge=1000, le=120_000)
    lead_list_delay_min_secs: float = Field(default=0.3, ge=0)
    lead_list_delay_max_secs: float = Field(default=0.9, ge=0)
    page_delay_min_secs: float = Field(default=2.0, ge=0)
    page_delay_max_secs: float = Field(default=5.0, ge=0)

    # === Pagination & Sidebars ===
    pagination_settle_ms: int = Field(
        default=1200,
        ge=100,
        le=60_000,
        description="How long to wait for the result list to change after a click"
    )
    pagination_poll_ms: int = Field(default=120, ge=10, le=5000)
    pagination_max_attempts: int = Field(default=3, ge=1, le=10)
    sidebar_retries: int = Field(default=3, ge=1, le=10)

    # === Logging ===
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="simple", description="simple or json")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("runner_api_secret")
    @classmethod
    def validate_secret_strength(cls, v: Optional[str]) -> Optional[str]:
        """Reject obviously weak secrets."""
        if v is None:
            return None
        weak_secrets = {"secret", "password", "changeme"}
        if v.lower() in weak_secrets or len(set(v)) < 4:
            raise ValueError("API secret is too weak - use a secure random string")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"simple", "json"}:
            raise ValueError("log_format must be 'simple' or 'json'")
        return v

    @model_validator(mode="after")
    def validate_delay_ranges(self) -> "LeadRunnerSettings":
        """Min/max delay pairs must be ordered."""
        if self.lead_list_delay_min_secs > self.lead_list_delay_max_secs:
            raise ValueError("lead_list_delay_min_secs must not exceed lead_list_delay_max_secs")
        if self.page_delay_min_secs > self.page_delay_max_secs:
            raise ValueError("page_delay_min_secs must not exceed page_delay_max_secs")
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def auth_required(self) -> bool:
        """Auth required in production or whenever a secret is configured."""
        return self.is_production or self.runner_api_secret is not None

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration is suitable for production.

        Returns list of warning/error messages.
        """
        issues = []

        if self.is_production:
            if not self.runner_api_secret:
                issues.append("CRITICAL: RUNNER_API_SECRET required in production")
            if not self.cors_origins:
                issues.append("WARNING: CORS_ORIGINS not configured")
            if not self.headless:
                issues.append("WARNING: HEADLESS is off in production")

        return issues


@lru_cache()
def get_settings() -> LeadRunnerSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached; call get_settings.cache_clear()
    after changing the environment (tests do this).
    """
    return LeadRunnerSettings()


def validate_config_on_startup() -> LeadRunnerSettings:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")

    for issue in settings.validate_production_config():
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        logger.warning(issue)

    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  data_dir={settings.data_dir} jobs_dir={settings.jobs_dir}")
    logger.info(f"  headless={settings.headless} speed_scale={settings.speed_scale}")
    logger.info(
        f"  pagination: settle={settings.pagination_settle_ms}ms "
        f"attempts={settings.pagination_max_attempts}"
    )
    logger.info(f"  auth_required={settings.auth_required}")
    return settings
