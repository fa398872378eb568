"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticketflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/ticketflow",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    db_create_tables: bool = Field(
        default=True,
        description="Create tables on startup (development only, use migrations in production)"
    )

    # ========== LLM (triage classifier) ==========
    llm_provider: str = Field(
        default="openai",
        description="LLM provider used for triage: openai, zai or mock"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    llm_model: str = Field(default="gpt-4o-mini", description="Model used for triage")
    llm_temperature: float = Field(
        default=0.3,
        description="Sampling temperature for triage",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=800,
        description="Max tokens for the triage completion",
        ge=1,
        le=8000
    )
    classifier_timeout_seconds: float = Field(
        default=20.0,
        description="Upper bound for one classification call; on expiry the fallback is used",
        gt=0,
        le=120
    )

    # ========== Mail ==========
    mail_api_url: Optional[str] = Field(
        default=None,
        description="HTTP mail API endpoint (JSON POST)"
    )
    mail_api_key: Optional[str] = Field(default=None, description="Mail API bearer token")
    mail_from: str = Field(default="support@ticketflow.local", description="Sender address")
    mail_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for mail API calls",
        ge=0.1,
        le=60
    )
    mail_max_retries: int = Field(
        default=2,
        description="Attempts per message before the transport reports failure",
        ge=1,
        le=5
    )
    mail_retry_backoff_seconds: float = Field(default=1.0, ge=0)
    mock_mail: bool = Field(
        default=False,
        description="Log outgoing mail instead of sending it"
    )

    # ========== Pipeline ==========
    step_max_retries: int = Field(
        default=2,
        description="Additional attempts for a step failing with a transient error",
        ge=0,
        le=10
    )
    step_retry_backoff_seconds: float = Field(
        default=1.0,
        description="Base of the exponential backoff between step attempts",
        ge=0
    )
    step_retry_max_wait_seconds: float = Field(default=30.0, ge=0)
    notes_excerpt_length: int = Field(
        default=200,
        description="Triage notes excerpt length in reassignment notifications",
        ge=20
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-eu-west-0.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Ensure the LLM provider is supported."""
        v = v.lower()
        allowed = {"openai", "zai", "mock"}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"


class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Difficulty(str, Enum):
    """Solution difficulty levels."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Effectiveness(str, Enum):
    """Solution effectiveness, derived from the user's rating."""
    PENDING = "pending"
    HELPFUL = "helpful"
    PARTIALLY_HELPFUL = "partially_helpful"
    NOT_HELPFUL = "not_helpful"


class UserRole(str, Enum):
    """User roles."""
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


# Skill list used when triage could not determine anything more specific
GENERAL_SUPPORT_SKILL = "General Support"

STAFF_ROLES = (UserRole.MODERATOR, UserRole.ADMIN)
