"""
Application configuration management
"""

from decimal import Decimal
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "BoxOffice"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    SECRET_KEY: str  # Must be provided via environment
    API_PREFIX: str = "/api/v1"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if not v or v == "your-secret-key-change-this-in-production":
            raise ValueError("SECRET_KEY must be set to a secure value in production")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str  # Must be provided via environment

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        elif v.startswith('sqlite://'):
            v = v.replace('sqlite://', 'sqlite+aiosqlite://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False
    SQLITE_BUSY_TIMEOUT_SECONDS: int = 30

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # JWT (staff tokens for scanners and box office operators)
    JWT_SECRET_KEY: Optional[str] = None  # Falls back to SECRET_KEY
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 720

    # Holds
    HOLD_DEFAULT_MINUTES: int = 15
    HOLD_MAX_MINUTES: int = 60
    HOLD_MAX_EXTENSIONS: int = 3
    HOLD_SWEEP_INTERVAL_SECONDS: int = 30
    HOLD_SWEEP_ENABLED: bool = True
    MAX_UNITS_PER_HOLD: int = 20

    # Orders and fees
    PROCESSING_FEE_RATE: Decimal = Decimal("0.03")
    PROCESSING_FEE_MINIMUM: Decimal = Decimal("0.00")
    CURRENCY: str = "USD"
    MAX_ITEMS_PER_ORDER: int = 20

    # Payment
    PAYMENT_TIMEOUT_SECONDS: float = 30.0
    CASH_PAYMENT_WINDOW_MINUTES: int = 60 * 24
    STRIPE_SECRET_KEY: str = ""
    PAYPAL_API_URL: str = "https://api-m.sandbox.paypal.com"
    PAYPAL_ACCESS_TOKEN: str = ""
    PAYMENT_MOCK_ENABLED: bool = True

    # Tickets and check-in
    TICKET_SIGNING_SECRET: Optional[str] = None  # Falls back to SECRET_KEY
    QR_RATE_LIMIT_ATTEMPTS: int = 10
    QR_RATE_LIMIT_WINDOW_SECONDS: int = 60
    QR_RATE_LIMIT_BLOCK_SECONDS: int = 15 * 60
    SUSPICIOUS_ACTIVITY_THRESHOLD: int = 3
    RATE_LIMIT_BACKEND: str = "redis"

    @field_validator('RATE_LIMIT_BACKEND')
    @classmethod
    def validate_rate_limit_backend(cls, v: str) -> str:
        if v not in ("redis", "memory"):
            raise ValueError("RATE_LIMIT_BACKEND must be 'redis' or 'memory'")
        return v

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://localhost:5173"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    LOG_DIR: str = "logs"

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def jwt_secret(self) -> str:
        return self.JWT_SECRET_KEY or self.SECRET_KEY

    @property
    def ticket_signing_secret(self) -> str:
        return self.TICKET_SIGNING_SECRET or self.SECRET_KEY

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()
