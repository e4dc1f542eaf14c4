"""Configuration management for EngagementDB.

This module provides centralized configuration using Pydantic Settings,
read from environment variables or a local ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, local SQLite gateway, safe defaults
    - PRODUCTION: Structured logging, tracing enabled, optimized for stability
    - TESTING: In-memory database, minimal logging, fast execution

Example:
    >>> from engagementdb.config import settings, GatewayBackend
    >>> print(settings.gateway_backend)
    GatewayBackend.SQLITE
    >>> if settings.is_production:
    ...     print("Running in production mode")
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from engagementdb.utils import redact_token

MEMORY_DATABASE = Path(":memory:")


class GatewayBackend(StrEnum):
    """Persistence gateway implementations."""

    SQLITE = "sqlite"
    REST = "rest"


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, safe defaults
        PRODUCTION: Conservative settings, tracing enabled, optimized for stability
        TESTING: In-memory database, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        gateway_backend: Which persistence gateway to use (sqlite or rest)
        gateway_url: Base URL of the hosted backend (rest backend only)
        gateway_key: API key for the hosted backend (rest backend only)
        rest_path: Path prefix of the row-level REST interface
        reaction_count_rpc: Stored procedure adjusting one reaction counter
        apply_reaction_rpc: Stored procedure applying a reaction in one transaction
        database_path: Path to SQLite database file
        request_timeout: Per-request timeout for the hosted backend (seconds)
        read_retries: Maximum attempts for idempotent reads
        atomic_reaction_writes: Push ledger write and counter pairing into one transaction
        enforce_unique_engagement: Look up (lead, CA) before recording a view
        reactor_preview_limit: Number of distinct reactor names in a summary
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Gateway Configuration
    gateway_backend: GatewayBackend = Field(
        default=GatewayBackend.SQLITE,
        description="Persistence gateway implementation (sqlite, rest)",
    )
    gateway_url: Optional[str] = Field(
        None,
        description="Hosted backend base URL (e.g., https://project.supabase.co)",
    )
    gateway_key: Optional[str] = Field(
        None,
        description="Hosted backend API key",
    )
    rest_path: str = Field(
        "/rest/v1",
        description="Path prefix of the row-level REST interface",
    )
    reaction_count_rpc: str = Field(
        "adjust_reaction_count",
        description="Stored procedure that atomically adjusts one counter bucket",
    )
    apply_reaction_rpc: str = Field(
        "apply_reaction",
        description="Stored procedure that applies a reaction and its counter pairing",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for data files (database, logs)",
    )

    # Database Configuration
    database_path: Path = Field(
        Path("engagement.db"),  # Will be updated to data_dir/engagement.db by validator
        description="Path to SQLite database file (defaults to data_dir/engagement.db)",
    )

    # Operational Parameters
    request_timeout: float = Field(
        10.0,
        gt=0,
        le=120,
        description="Hosted backend request timeout in seconds",
    )
    read_retries: int = Field(
        3,
        ge=1,
        le=10,
        description="Maximum attempts for idempotent reads against the hosted backend",
    )
    atomic_reaction_writes: bool = Field(
        True,
        description="Apply reaction writes and counter adjustments in one transaction",
    )
    enforce_unique_engagement: bool = Field(
        True,
        description="Return the existing engagement instead of inserting a duplicate",
    )
    reactor_preview_limit: int = Field(
        3,
        ge=0,
        le=20,
        description="Distinct reactor names included in a reaction summary",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("gateway_url")
    @classmethod
    def strip_gateway_url(cls, v: Optional[str]) -> Optional[str]:
        """Drop trailing slashes so paths can be appended safely."""
        if v is None:
            return None
        v = v.strip().rstrip("/")
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Gateway URL must start with http:// or https://")
        return v or None

    @model_validator(mode="after")
    def set_database_path_default(self) -> "Settings":
        """Set database_path to data_dir/engagement.db if not explicitly provided."""
        if self.database_path == Path("engagement.db"):
            self.database_path = self.data_dir / "engagement.db"
        if self.database_path != MEMORY_DATABASE:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging, JSON logs, tracing enabled
            - DEVELOPMENT: DEBUG logging, human-readable logs, tracing disabled
            - TESTING: In-memory database, ERROR logging, no file logging, no tracing
            - STAGING: Production-like with INFO logging

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.database_path = MEMORY_DATABASE
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @model_validator(mode="after")
    def validate_gateway(self) -> "Settings":
        """Require hosted backend credentials when the REST gateway is selected."""
        if self.gateway_backend == GatewayBackend.REST:
            if not self.gateway_url:
                raise ValueError("GATEWAY_URL is required for the rest gateway backend")
            if not self.gateway_key or len(self.gateway_key) < 10:
                raise ValueError("GATEWAY_KEY must be at least 10 characters")
        return self

    @property
    def rest_endpoint(self) -> str:
        """Get base URL of the hosted REST interface."""
        if not self.gateway_url:
            raise RuntimeError("Gateway URL not configured")
        return f"{self.gateway_url}/{self.rest_path.strip('/')}"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        """Check if running in staging environment."""
        return self.environment == Environment.STAGING

    def redact_key(self, key: Optional[str] = None) -> str:
        """Redact the gateway key for logging.

        Args:
            key: Key to redact (defaults to gateway_key)

        Returns:
            Redacted key string
        """
        return redact_token(key or self.gateway_key)


def get_settings() -> Settings:
    """Get a settings instance built from the current environment."""
    return Settings()


# Global settings instance
settings = get_settings()
