"""
Application Configuration - Pydantic Settings for type-safe config.

Process-level settings only. Operator-tunable values (claim amounts, push
credentials, directory session) live in the admin_config table and are read
fresh per operation by AdminConfigProvider.

FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_title: str = "Quota Bridge API"
    api_version: str = "0.1.0"
    api_description: str = "Exchange donated API keys and daily grants for gateway quota"

    # Sessions are issued by the external login flow; we only verify them
    SESSION_JWT_SECRET: str = ""
    session_cookie_name: str = "session_token"

    # Admin Authentication
    ADMIN_PASSWORD_HASH: str = ""  # argon2 hash of the admin password
    ADMIN_JWT_SECRET: str = ""
    admin_jwt_expire_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "quota-bridge-api"
    trace_sample_rate: float = 1.0

    # Gateway (directory search + quota mutation)
    gateway_base_url: str = "https://api.kkyyxx.xyz"
    gateway_api_user: str = "1"  # sent as the new-api-user header
    gateway_timeout_seconds: float = 15.0
    directory_page_size: int = 100
    directory_max_pages: int = 20

    # Liveness probe (inference endpoint)
    probe_base_url: str = "https://api-inference.modelscope.cn/v1"
    probe_model: str = "ZhipuAI/GLM-4.6"
    probe_timeout_seconds: float = 10.0
    probe_concurrency: int = 10

    # Downstream key pool
    push_timeout_seconds: float = 30.0

    # Submitted key format rules
    key_required_prefix: str = ""
    key_min_length: int = 1
    key_max_length: int = 200

    # Apply pending Alembic migrations in the lifespan hook
    run_migrations_on_startup: bool = True

    # In-memory pre-check in front of the ledger (single-process deployments only)
    ledger_prefilter_enabled: bool = False

    # Seeds for the admin_config row when it does not exist yet
    default_claim_quota: int = 20_000_000
    default_per_key_quota: int = 100_000_000
    default_min_quota_threshold: int = 10_000_000
    default_push_endpoint: str = "https://gpt-load.kyx03.de/api/keys/add-async"
    default_push_group_id: int = 26
    first_bind_bonus: int = 100_000_000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.probe_concurrency < 1:
            errors.append(f"PROBE_CONCURRENCY must be >= 1, got: {self.probe_concurrency}")

        if self.directory_page_size < 1 or self.directory_max_pages < 1:
            errors.append("DIRECTORY_PAGE_SIZE and DIRECTORY_MAX_PAGES must be >= 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
