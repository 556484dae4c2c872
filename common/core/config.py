from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment, LockProvider, CacheProvider


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "metered-billing"
    api_version: str = "0.1.0"
    debug: bool = False
    app_base_url: str = "http://localhost:8000"

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Rate limiting (slowapi storage, e.g. "memory://" or a redis URL)
    rate_limit_storage_uri: str = "memory://"

    # OpenTelemetry
    otel_service_name: str = "metered-billing"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only attached when a token is configured)
    axiom_token: Optional[str] = None
    axiom_dataset: str = "billing"

    # Billing - Stripe (payment gateway)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    billing_currency: str = "krw"

    # Billing - policy
    billing_enforcement_enabled: bool = True
    billing_period_days: int = 30
    renewal_lookahead_hours: int = 24
    gateway_charge_timeout_seconds: float = 20.0
    failure_window_days: int = 30
    auto_cancel_failure_threshold: int = 3
    pending_charge_grace_hours: int = 24
    renewal_interval_seconds: int = 86400

    # Billing - triggers
    cron_secret: str = ""
    admin_secret: str = ""

    # Locking
    lock_provider: LockProvider = LockProvider.LOCAL
    lock_ttl_seconds: int = 60
    lock_acquire_timeout_seconds: float = 10.0

    # Caching
    cache_provider: CacheProvider = CacheProvider.MEMORY
    cache_max_entries: int = 100
    cache_ttl_seconds: int = 60
    cache_sweep_interval_seconds: int = 60

    @property
    def is_production_like(self) -> bool:
        """Anything other than local development requires signed webhooks."""
        return self.environment != Environment.LOCAL

    @property
    def cors_allowed_origins(self) -> List[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:3001",
            ]
        return [self.app_base_url]


settings = Settings()
