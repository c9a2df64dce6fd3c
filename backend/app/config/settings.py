"""
Application Settings for My Mechanic API

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Stripe price IDs are optional here: a missing price only disables
    purchasing that plan and is reported as a startup warning.
    """

    # Supabase Configuration (identity provider)
    supabase_url: str
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: str
    supabase_jwt_secret: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_trial: Optional[str] = None
    stripe_price_basic: Optional[str] = None
    stripe_price_starter: Optional[str] = None
    stripe_price_professional: Optional[str] = None
    stripe_price_unlimited: Optional[str] = None
    stripe_price_workshop: Optional[str] = None  # legacy

    # Plan policy
    trial_plan_max_uses: int = 2
    default_plan_id: str = "starter"

    # Google AI Configuration (accepts GOOGLE_API_KEY or GEMINI_API_KEY)
    google_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    chat_max_output_tokens: int = 4096
    chat_temperature: float = 0.4

    # Chat request limits
    chat_max_message_length: int = 5000
    chat_max_history_length: int = 50

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS / redirect configuration
    frontend_url: str = "http://localhost:3000"
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Audit log sink
    audit_log_flush_interval_seconds: float = 5.0
    audit_log_max_queue_size: int = 1000
    audit_log_batch_size: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def normalize_api_keys(self) -> "Settings":
        """Normalize gemini_api_key to google_api_key."""
        if not self.google_api_key and self.gemini_api_key:
            self.google_api_key = self.gemini_api_key

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
