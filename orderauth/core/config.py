import ssl
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import FastAPI
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/orderauth.db", alias="DATABASE_URL"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    kv_namespace: str = Field(default="orderauth:", alias="KV_NAMESPACE")
    kv_cache_ttl_seconds: float = Field(default=300, alias="KV_CACHE_TTL_SECONDS", gt=0)
    data_cache_ttl_seconds: float = Field(
        default=300, alias="DATA_CACHE_TTL_SECONDS", gt=0
    )

    identity_url: str | None = Field(default=None, alias="IDENTITY_URL")
    identity_anon_key: str | None = Field(default=None, alias="IDENTITY_ANON_KEY")
    identity_timeout_seconds: float = Field(
        default=10, alias="IDENTITY_TIMEOUT_SECONDS", gt=0
    )

    otp_resend_cooldown_seconds: float = Field(
        default=60, alias="OTP_RESEND_COOLDOWN_SECONDS", ge=0
    )
    otp_length: int = Field(default=6, alias="OTP_LENGTH", ge=4)

    invite_ttl_days: int = Field(default=7, alias="INVITE_TTL_DAYS", ge=1)
    invite_base_url: str | None = Field(default=None, alias="INVITE_BASE_URL")
    recovery_redirect_url: str = Field(
        default="ordermanagementapp:///auth/callback?type=recovery",
        alias="RECOVERY_REDIRECT_URL",
    )

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    mail_from: str | None = Field(default=None, alias="MAIL_FROM")


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore


def get_smtp_ctx() -> ssl.SSLContext:
    return ssl.create_default_context()


@asynccontextmanager
async def lifespan(app: FastAPI):
    import httpx

    from orderauth.core.database import build_engine, build_session_factory, init_models
    from orderauth.core.redis import create_redis_client
    from orderauth.services.engine import build_auth_engine

    settings = get_settings()

    db_engine = build_engine(settings.database_url)
    await init_models(db_engine)

    redis_client = create_redis_client()
    http_client = httpx.AsyncClient(timeout=settings.identity_timeout_seconds)

    app.state.db_engine = db_engine
    app.state.redis = redis_client
    app.state.engine = build_auth_engine(
        settings,
        redis_client=redis_client,
        session_factory=build_session_factory(db_engine),
        http_client=http_client,
    )

    try:
        yield
    finally:
        await http_client.aclose()
        await redis_client.aclose()
        await db_engine.dispose()
