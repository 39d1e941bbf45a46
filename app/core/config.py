"""
Application configuration.
All settings are loaded from environment variables (or .env).
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


DEVELOPMENT_ENVS = frozenset({"local", "development", "dev", "test"})


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Infrastructure URLs and the JWT secret have no defaults - they MUST be set.
    Gateway credentials are optional: without them payment endpoints answer 503.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated origins. Empty = built-in default list.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""
    # Base URL the API is reachable at (used to build /downloads/{token} links)
    public_base_url: str = "http://localhost:8000"
    # Frontend URL (payment link callback)
    frontend_url: str = "http://localhost:5173"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    database_connect_timeout: int = 5
    database_statement_timeout_ms: int = 5000

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default
    celery_task_retry_delay: int = 5
    celery_task_max_retries: int = 3

    # ===========================================
    # AUTH (bearer tokens issued by the identity service)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"

    # ===========================================
    # PAYMENT GATEWAY (Razorpay)
    # ===========================================
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    # Webhook secret from the Razorpay dashboard. Mandatory outside development envs.
    razorpay_webhook_secret: str | None = None
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 10.0
    gateway_currency: str = "INR"
    gateway_min_amount: int = 100  # minor units (paise)

    # ===========================================
    # DOWNLOAD TOKENS
    # ===========================================
    download_token_ttl_hours: int = 24
    download_token_retention_days: int = 7

    # ===========================================
    # ABUSE PROTECTION
    # ===========================================
    purchase_rate_limit: int = 5
    purchase_rate_window_seconds: int = 60
    webhook_dedup_ttl: int = 86400  # 1 day

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("razorpay_key_id", "razorpay_key_secret", "razorpay_webhook_secret", mode="before")
    @classmethod
    def strip_credentials(cls, v: str | None) -> str | None:
        """Treat blank credentials as missing."""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password"):
            raise ValueError("jwt_secret_key is too weak, please change it")
        return v

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in DEVELOPMENT_ENVS

    @property
    def payments_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
