from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ats-api"
    environment: str = "dev"
    version: str = "dev"
    app_base_url: str = "http://localhost:3000"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    auth_timeout_seconds: float = 5.0
    session_cookie_name: str = "sb-access-token"
    storage_timeout_seconds: float = 30.0
    signed_url_ttl_seconds: int = 3600
    upload_max_bytes: int = 5 * 1024 * 1024
    encryption_secret: str | None = None
    encryption_salt: str = "jadarat-ats-salt"
    oauth_timeout_seconds: float = 10.0
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_api_base: str = "https://api.stripe.com"
    resend_api_key: str | None = None
    email_from: str = "Careers <no-reply@example.com>"
    otel_enabled: bool = True
    otel_service_name: str = "ats-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="ATS_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
