from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "Africa/Lagos"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./checkout.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Payment gateway (Paystack, NGN settlement)
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_PUBLIC_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"

    # Courier aggregator (Shipbubble)
    SHIPBUBBLE_API_BASE: str = "https://api.shipbubble.com/v1"
    SHIPBUBBLE_API_KEY: str = ""
    SHIPBUBBLE_CATEGORY_ID: int = 90097994
    SHIPBUBBLE_TIMEOUT_SECONDS: float = 15.0
    SHIPBUBBLE_LABEL_TIMEOUT_SECONDS: float = 20.0
    SHIPBUBBLE_MAX_ATTEMPTS: int = 3
    SHIPBUBBLE_ORIGIN_NAME: str = ""
    SHIPBUBBLE_ORIGIN_EMAIL: str = ""
    SHIPBUBBLE_ORIGIN_PHONE: str = ""
    SHIPBUBBLE_ORIGIN_STREET: str = ""
    SHIPBUBBLE_ORIGIN_CITY: str = ""
    SHIPBUBBLE_ORIGIN_STATE: str = ""
    SHIPBUBBLE_ORIGIN_COUNTRY: str = "Nigeria"

    # FX
    FX_PROVIDER_URL: str = "https://open.er-api.com/v6/latest"
    FX_CACHE_TTL_SECONDS: int = 1800
    FX_TIMEOUT_SECONDS: float = 10.0

    # Pricing / settlement
    SIZE_MOD_RATE: Decimal = Decimal("0.05")
    ALLOW_APPROXIMATE_SETTLEMENT: bool = False

    # Reconciliation
    RECONCILE_SECRET: Optional[str] = None
    AUTO_REFUND_ORPHANS: bool = False
    ORPHAN_SWEEP_MIN_AGE_MINUTES: int = 10

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Client-side checkout workflow
    CHECKOUT_API_URL: str = "http://localhost:8000"
    CHECKOUT_API_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
