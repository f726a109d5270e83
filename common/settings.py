from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    log_level: str = "INFO"

    # "memory://" keeps everything in process, "" means no database at all
    database_url: str = "memory://"

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance: int = 300

    jwt_secret: str = "dev-secret-change"
    jwt_issuer: str = "leadzpay"
    jwt_ttl_seconds: int = 7 * 24 * 60 * 60

    app_url: str = "http://localhost:3000"
    cors_origins: str = "*"

    balance_scan_limit: int = 1000
    transaction_list_limit: int = 100

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url.strip())

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
