"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Redis & Job Queue
    redis_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # LLM (pattern oracle)
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    oracle_max_tokens: int = 2048
    oracle_temperature: float = 0.0
    dry_run_verification_enabled: bool = True

    # Partner Matching
    # USER DECISION: 89 so that a 90 website/name signal auto-applies but an 88 pattern does not
    partner_auto_apply_threshold: int = 89
    file_auto_match_threshold: int = 85  # File <-> transaction, weaker signals
    file_suggestion_threshold: int = 50

    # Pattern Learning
    learning_debounce_minutes: int = 5
    learning_sweep_interval_minutes: int = 5
    store_batch_size: int = 500  # Rows per committed write batch
    pattern_application_cap: int = 10000  # Max transactions scanned per run

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
