"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Every field can be overridden with the upper-cased environment
    variable of the same name, or from a ``.env`` file.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./courseforge.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(default=5, description="Number of persistent database connections")
    db_max_overflow: int = Field(default=10, description="Extra connections allowed during bursts")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection")
    db_pool_recycle: int = Field(default=1800, description="Seconds before a connection is recycled")

    # Authentication
    # AUTH_ENABLED=false: the owner is taken from the X-Owner-Id header (dev mode).
    jwt_secret_key: str = Field(
        default="dev-insecure-key-change-me",
        description="JWT signing secret (override in production)"
    )
    jwt_algorithm: str = Field(default="HS256")
    auth_enabled: bool = Field(
        default=False,
        description="Require a bearer token whose subject is the owner id"
    )

    # Rate Limiting
    rate_limit_per_minute: int = Field(
        default=60,
        description="Maximum requests per client per minute (0 = unlimited)"
    )
    generation_request_weight: float = Field(
        default=5.0,
        description="Rate-limit tokens consumed by one POST to a generation endpoint"
    )

    # Model provider (LiteLLM model string)
    model_name: str = Field(
        default="anthropic/claude-3-sonnet-20240229",
        description="LiteLLM model for text generation (empty = disabled)"
    )
    model_api_key: str = Field(default="", description="API key for the text model provider")
    model_api_base: str = Field(default="", description="Base URL for the text model provider (optional)")
    model_max_tokens: int = Field(default=4000, description="Default completion budget")
    model_temperature: float = Field(default=0.7, description="Default sampling temperature")
    image_model: str = Field(
        default="dall-e-3",
        description="LiteLLM model for image generation (empty = disabled)"
    )

    # Response cache
    cache_max_entries: int = Field(default=50, description="Max cached model responses")
    cache_ttl_seconds: float = Field(default=600.0, description="Seconds a cached response stays valid")

    # Research provider (Perplexity-compatible chat completions API)
    research_api_key: str = Field(default="", description="API key for the research provider (empty = disabled)")
    research_api_base: str = Field(default="https://api.perplexity.ai", description="Research provider base URL")
    research_model: str = Field(default="llama-3.1-sonar-large-128k-online")
    research_timeout: float = Field(default=60.0, description="Seconds before a research call is abandoned")

    # Credits
    initial_credits: int = Field(default=100, description="Credits granted to a newly created account")

    # Batch fan-out
    batch_window_size: int = Field(default=5, ge=1, description="Member jobs run concurrently per window")
    batch_window_delay: float = Field(default=1.0, ge=0, description="Seconds to pause between windows")

    # Notifications
    notification_webhook_url: str = Field(
        default="",
        description="URL receiving job completion events (empty = log only)"
    )
    notification_timeout: float = Field(default=10.0)

    # Worker
    worker_poll_interval: int = Field(default=10, description="Seconds between queue polls")
    worker_pending_grace_seconds: int = Field(
        default=30,
        description="Pending jobs younger than this are left to the request that created them"
    )
    stale_job_timeout_seconds: int = Field(
        default=1800,
        description="Processing jobs older than this are failed by the sweeper"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as a list. Wildcards are rejected."""
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )
        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        Raises:
            ConfigurationError: If production config is insecure.
        """
        errors: list[str] = []

        if self.jwt_secret_key == "dev-insecure-key-change-me":
            errors.append(
                "JWT_SECRET_KEY is using the default insecure value. "
                "Generate a secure key: openssl rand -hex 32"
            )
        if not self.auth_enabled:
            errors.append(
                "AUTH_ENABLED is false. Owners would be taken from an unauthenticated header."
            )
        if not self.model_name or not self.model_api_key:
            errors.append("MODEL_NAME and MODEL_API_KEY must be set in production.")

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is insecure:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        # model_name / model_api_key would otherwise clash with pydantic's "model_" namespace.
        protected_namespaces = ("settings_",)


# Global settings instance
settings = Settings()
