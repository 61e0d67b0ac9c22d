from functools import lru_cache
from typing import Any, List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    log_level: str | None = Field(default=None, alias="LOG_LEVEL")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="remixhub", alias="MONGODB_DB_NAME")

    # Redis (worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # GitHub
    github_api_url: str = Field(default="https://api.github.com", alias="GITHUB_API_URL")
    github_user_agent: str = "RemixHub"

    # Mercado Pago (PIX)
    mercadopago_api_url: str = Field(default="https://api.mercadopago.com", alias="MERCADOPAGO_API_URL")
    mercadopago_access_token: str = Field(default="", alias="MERCADOPAGO_ACCESS_TOKEN")
    mercadopago_webhook_secret: str = Field(default="", alias="MERCADOPAGO_WEBHOOK_SECRET")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Outbound HTTP
    http_timeout_seconds: float = 20.0
    http_retry_backoff_seconds: float = 1.0

    # Remix execution
    remix_timeout_seconds: float = 300.0
    remix_stale_grace_seconds: float = 60.0
    remix_rate_limit_per_hour: int = 10
    blob_failure_mode: Literal["best_effort", "fail_fast"] = "best_effort"
    blob_copy_concurrency: int = 8
    repo_init_wait_seconds: float = 2.0

    # Pricing (credits)
    credits_per_remix: int = 1
    price_per_credit_cents: int = 50
    max_credits_per_order: int = 5000
    payment_expiry_minutes: int = 5


@lru_cache
def get_settings() -> Settings:
    return Settings()
