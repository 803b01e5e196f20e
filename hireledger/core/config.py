"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values, including
every billing rate, fee and threshold.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "hireledger_user"
    postgres_password: str = "password"
    postgres_db: str = "hireledger_db"

    # Full SQLAlchemy URL, overrides the postgres_* parts when set
    database_url: Optional[str] = None

    # MongoDB (audit trail)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "hireledger_audit"
    mongodb_timeout_ms: int = 3000

    # JWT Auth
    jwt_secret_key: str = "change-this-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440

    # Billing
    currency: str = "USD"
    default_commission_rate: float = 0.10
    commission_rate_shortlisting: float = 0.15
    commission_rate_full_service: float = 0.20
    commission_rate_executive_search: float = 0.25
    service_fee_shortlisting: float = 1990.0
    service_fee_full_service: float = 5990.0
    service_fee_executive_search: float = 9990.0
    sales_commission_window_months: int = 12
    placement_commission_expiry_months: int = 12
    minimum_withdrawal: float = 50.0

    # App
    debug: bool = False
    log_level: str = "INFO"

    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL"""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or self.postgres_url

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
