"""
Configuration management using Pydantic Settings.
"""
from typing import Optional, Literal
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True
    )
    
    # Application Configuration
    app_name: str = Field(default="provider-orchestrator", alias="APP_NAME")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    app_env: Literal["development", "production", "testing"] = Field(
        default="development", alias="APP_ENV"
    )
    app_debug: bool = Field(default=False, alias="APP_DEBUG")
    admin_key: SecretStr = Field(
        default=SecretStr("admin-secret-key-change-this"), alias="ADMIN_KEY"
    )
    
    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/orchestrator.db",
        alias="DATABASE_URL"
    )
    
    # Redis Configuration
    redis_enabled: bool = Field(default=False, alias="REDIS_ENABLED")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_cache_ttl: int = Field(default=300, alias="REDIS_CACHE_TTL")
    
    # Logging Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    log_format: Literal["json", "text"] = Field(default="json", alias="LOG_FORMAT")
    
    # Health Check Configuration
    health_check_enabled: bool = Field(default=True, alias="HEALTH_CHECK_ENABLED")
    health_check_tick_seconds: float = Field(default=5.0, alias="HEALTH_CHECK_TICK_SECONDS")
    health_check_timeout_cap_ms: int = Field(default=10000, alias="HEALTH_CHECK_TIMEOUT_CAP_MS")
    health_check_concurrency: int = Field(default=8, ge=1, alias="HEALTH_CHECK_CONCURRENCY")
    health_history_size: int = Field(default=20, ge=1, alias="HEALTH_HISTORY_SIZE")
    
    # Admission control and failover
    rate_limit_window_seconds: int = Field(default=60, ge=1, alias="RATE_LIMIT_WINDOW_SECONDS")
    retry_backoff_base_seconds: float = Field(default=1.0, ge=0, alias="RETRY_BACKOFF_BASE_SECONDS")
    retry_backoff_max_seconds: float = Field(default=10.0, ge=0, alias="RETRY_BACKOFF_MAX_SECONDS")
    
    # Cost alerts and recommendations
    alert_warning_ratio: float = Field(default=0.8, gt=0, alias="ALERT_WARNING_RATIO")
    alert_spike_multiplier: float = Field(default=3.0, gt=0, alias="ALERT_SPIKE_MULTIPLIER")
    recommend_cost_dominance_ratio: float = Field(default=0.6, alias="RECOMMEND_COST_DOMINANCE_RATIO")
    recommend_min_success_rate: float = Field(default=0.95, alias="RECOMMEND_MIN_SUCCESS_RATE")
    recommend_week_over_week_increase: float = Field(
        default=0.5, alias="RECOMMEND_WEEK_OVER_WEEK_INCREASE"
    )
    recommend_max_cost_per_token: float = Field(default=0.001, alias="RECOMMEND_MAX_COST_PER_TOKEN")
    
    # Provider seeding and startup credentials
    seed_default_providers: bool = Field(default=True, alias="SEED_DEFAULT_PROVIDERS")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")
    google_api_key: Optional[SecretStr] = Field(default=None, alias="GOOGLE_API_KEY")
    mistral_api_key: Optional[SecretStr] = Field(default=None, alias="MISTRAL_API_KEY")
    groq_api_key: Optional[SecretStr] = Field(default=None, alias="GROQ_API_KEY")
    perplexity_api_key: Optional[SecretStr] = Field(default=None, alias="PERPLEXITY_API_KEY")
    
    # Usage retention
    usage_retention_days: int = Field(default=90, ge=1, alias="USAGE_RETENTION_DAYS")
    usage_cleanup_interval_hours: int = Field(default=24, ge=1, alias="USAGE_CLEANUP_INTERVAL_HOURS")
    
    # CORS Configuration
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")
    
    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"
    
    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]
    
    def startup_credential(self, provider_type: str) -> Optional[SecretStr]:
        """Credential supplied at startup for a provider type, if any."""
        return getattr(self, f"{provider_type}_api_key", None)


# Global settings instance, read by the composition root only
settings = Settings()


def get_settings() -> Settings:
    """
    Get settings instance.
    
    Returns:
        Settings instance
    """
    return settings
