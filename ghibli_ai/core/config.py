from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parents[1]
REPO_ROOT = PACKAGE_DIR.parent
ENV_FILES = [REPO_ROOT / ".env", REPO_ROOT / ".env.local"]

for env_path in ENV_FILES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="allow", populate_by_name=True)

    app_name: str = Field(default="Ghibli AI", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    api_prefix: str = Field(default="/api", alias="API_PREFIX")
    backend_cors_origins_raw: str = Field(default="http://localhost:3000", alias="BACKEND_CORS_ORIGINS")
    public_base_url: str | None = Field(
        default=None,
        alias="PUBLIC_BASE_URL",
        description="Externally reachable origin used for provider callbacks and checkout redirects",
    )

    # Supabase: session verification and subscription persistence
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")
    supabase_jwt_secret: str | None = Field(default=None, alias="SUPABASE_JWT_SECRET")
    supabase_jwt_audience: str = Field(default="authenticated", alias="SUPABASE_JWT_AUDIENCE")
    auth_cookie_name: str = Field(default="sb-access-token", alias="AUTH_COOKIE_NAME")

    # Cloudflare R2 (S3 compatible)
    r2_account_id: str | None = Field(default=None, alias="R2_ACCOUNT_ID")
    r2_access_key_id: str | None = Field(default=None, alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: str | None = Field(default=None, alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str | None = Field(default=None, alias="R2_BUCKET_NAME")
    r2_public_url_base: str | None = Field(default=None, alias="R2_PUBLIC_URL_BASE")
    r2_endpoint_url: str | None = Field(
        default=None,
        alias="R2_ENDPOINT_URL",
        description="Overrides the endpoint derived from R2_ACCOUNT_ID (e.g. a local MinIO)",
    )
    r2_region: str = Field(default="auto", alias="R2_REGION")

    # Generation providers
    replicate_api_token: str | None = Field(default=None, alias="REPLICATE_API_TOKEN")
    replicate_base_url: str = Field(default="https://api.replicate.com", alias="REPLICATE_BASE_URL")
    replicate_model: str = Field(default="black-forest-labs/flux-kontext-pro", alias="REPLICATE_MODEL")
    ismaque_api_key: str | None = Field(default=None, alias="ISMAQUE_API_KEY")
    ismaque_base_url: str = Field(default="https://ismaque.org", alias="ISMAQUE_BASE_URL")
    ismaque_model: str = Field(default="flux-kontext-pro", alias="ISMAQUE_MODEL")

    # Stripe
    stripe_secret_key: str | None = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_pro_price_id: str = Field(default="", alias="STRIPE_PRO_PRICE_ID")
    stripe_enterprise_price_id: str = Field(default="", alias="STRIPE_ENTERPRISE_PRICE_ID")

    # Rate limiting
    rate_limit_max_requests: int = Field(default=10, ge=1, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_ms: int = Field(default=60_000, ge=1, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_sweep_interval_seconds: float = Field(
        default=60.0, gt=0, alias="RATE_LIMIT_SWEEP_INTERVAL_SECONDS"
    )

    # Generation flow bounds
    poll_interval_seconds: float = Field(default=2.0, ge=0, alias="POLL_INTERVAL_SECONDS")
    poll_max_attempts: int = Field(default=30, ge=1, alias="POLL_MAX_ATTEMPTS")
    provider_timeout_seconds: float = Field(default=60.0, gt=0, alias="PROVIDER_TIMEOUT_SECONDS")
    image_download_timeout_seconds: float = Field(
        default=30.0, gt=0, alias="IMAGE_DOWNLOAD_TIMEOUT_SECONDS"
    )
    max_upload_image_mb: int = Field(default=30, ge=1, alias="MAX_UPLOAD_IMAGE_MB")
    max_download_image_mb: int = Field(default=50, ge=1, alias="MAX_DOWNLOAD_IMAGE_MB")
    download_allowed_hosts_raw: str = Field(
        default="replicate.delivery,ismaque.org", alias="DOWNLOAD_ALLOWED_HOSTS"
    )
    cancel_polling_on_disconnect: bool = Field(default=False, alias="CANCEL_POLLING_ON_DISCONNECT")

    # Telemetry
    enable_prometheus_metrics: bool = Field(default=True, alias="ENABLE_PROMETHEUS_METRICS")
    prometheus_metrics_path: str = Field(default="/metrics/prometheus", alias="PROMETHEUS_METRICS_PATH")
    otel_exporter_otlp_endpoint: str | None = Field(default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_exporter_otlp_headers: str | None = Field(default=None, alias="OTEL_EXPORTER_OTLP_HEADERS")
    otel_service_name: str | None = Field(default=None, alias="OTEL_SERVICE_NAME")

    @property
    def backend_cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.backend_cors_origins_raw.split(",") if origin.strip()]

    @property
    def max_upload_image_bytes(self) -> int:
        return self.max_upload_image_mb * 1024 * 1024

    @property
    def max_download_image_bytes(self) -> int:
        return self.max_download_image_mb * 1024 * 1024

    @property
    def download_allowed_hosts(self) -> List[str]:
        """Hosts images may be proxied from, including the public R2 host."""

        hosts = [h.strip().lower() for h in self.download_allowed_hosts_raw.split(",") if h.strip()]
        if self.r2_public_url_base:
            r2_host = urlparse(self.r2_public_url_base).hostname
            if r2_host and r2_host.lower() not in hosts:
                hosts.insert(0, r2_host.lower())
        return hosts


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
