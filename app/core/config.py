from functools import lru_cache
from typing import List, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DOKU_PRODUCTION_URL = "https://api.doku.com"
DOKU_SANDBOX_URL = "https://api-sandbox.doku.com"


class Settings(BaseSettings):
    APP_NAME: str = "Game Marketplace API"
    APP_ENV: str = "production"
    APP_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    BACKEND_CORS_ORIGINS: str = "*"  # comma-separated list

    DATABASE_URL: str = "sqlite:///./marketplace.db"

    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Redis/Celery Configuration
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM: Optional[str] = None

    # DOKU
    DOKU_CLIENT_ID: Optional[str] = None
    DOKU_SECRET_KEY: Optional[str] = None
    DOKU_IS_PRODUCTION: bool = False
    DOKU_BASE_URL: Optional[str] = None
    DOKU_TIMEOUT_SECONDS: float = 30.0
    DOKU_CURRENCY: str = "IDR"
    DOKU_PAYMENT_DUE_MINUTES: int = 1440
    DOKU_CUSTOMER_COUNTRY: str = "ID"
    DOKU_DEFAULT_PHONE: str = "628000000000"
    DOKU_VERIFY_CALLBACK_SIGNATURE: bool = False
    DOKU_CALLBACK_ALLOWED_IPS: str = ""  # comma-separated list, empty = any

    # Orders
    ORDER_EXPIRY_HOURS: int = 24
    ALLOW_CONCURRENT_ORDERS: bool = True
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 600

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def resolve_gateway_url(self):
        if not self.DOKU_BASE_URL:
            self.DOKU_BASE_URL = DOKU_PRODUCTION_URL if self.DOKU_IS_PRODUCTION else DOKU_SANDBOX_URL
        self.DOKU_BASE_URL = self.DOKU_BASE_URL.strip().rstrip("/")
        if self.DOKU_CLIENT_ID:
            self.DOKU_CLIENT_ID = self.DOKU_CLIENT_ID.strip().strip('"').strip("'")
        if self.DOKU_SECRET_KEY:
            secret = self.DOKU_SECRET_KEY.strip()
            # Strip only surrounding quotes, the key itself may contain any character
            if (secret.startswith('"') and secret.endswith('"')) or (secret.startswith("'") and secret.endswith("'")):
                secret = secret[1:-1]
            self.DOKU_SECRET_KEY = secret
        return self

    @property
    def callback_allowed_ips(self) -> List[str]:
        return [ip.strip() for ip in self.DOKU_CALLBACK_ALLOWED_IPS.split(",") if ip.strip()]

    @property
    def gateway_configured(self) -> bool:
        return bool(self.DOKU_CLIENT_ID and self.DOKU_SECRET_KEY)


@lru_cache
def get_settings() -> Settings:
    return Settings()
