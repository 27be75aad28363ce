# app/core/config.py
"""Configuration settings for the document chat API.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class ChromaModeEnum(str, Enum):
    persistent = "persistent"
    http = "http"
    cloud = "cloud"
    ephemeral = "ephemeral"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Document Chat API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key used to verify access tokens",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== AI Service (Gemini) =====
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Gemini model to use")
    gemini_max_tokens: int = Field(default=2048, description="Maximum output tokens for answers")
    chat_temperature: float = Field(default=0.7, description="Sampling temperature for answers")
    ai_request_timeout: int = Field(default=60, description="AI request timeout in seconds")

    summary_temperature: float = Field(default=0.3, description="Temperature for summaries")
    summary_max_tokens: int = Field(default=512, description="Token cap for summaries")
    rewrite_temperature: float = Field(default=0.2, description="Temperature for query rewrites")
    rewrite_max_tokens: int = Field(default=128, description="Token cap for query rewrites")

    # ===== Embeddings =====
    embedding_model: str = Field(
        default="models/text-embedding-004", description="Gemini embedding model"
    )
    embedding_batch_size: int = Field(default=100, description="Texts per embedding call")
    embedding_max_attempts: int = Field(
        default=1, description="Attempts per embedding batch (1 disables retry)"
    )

    # ===== Vector Store (Chroma) =====
    chroma_mode: ChromaModeEnum = Field(
        default=ChromaModeEnum.persistent, description="How to reach Chroma"
    )
    chroma_path: str = Field(default="./chroma_data", description="Local persistence directory")
    chroma_host: str = Field(default="localhost", description="Chroma server host")
    chroma_port: int = Field(default=8001, description="Chroma server port")
    chroma_api_key: str | None = Field(default=None, description="Chroma Cloud API key")
    chroma_tenant: str | None = Field(default=None, description="Chroma Cloud tenant")
    chroma_database: str | None = Field(default=None, description="Chroma Cloud database")
    chroma_collection: str = Field(default="documents", description="Collection name")
    chroma_batch_size: int = Field(default=300, description="Chunks per upsert call")

    # ===== Retrieval & Memory =====
    chunk_size: int = Field(default=1000, description="Chunk length in characters")
    chunk_overlap: int = Field(default=200, description="Characters shared by adjacent chunks")
    retrieval_top_k: int = Field(default=4, description="Chunks retrieved per question")
    recent_history_turns: int = Field(default=4, description="Turns kept verbatim in prompts")
    summary_interval: int = Field(default=6, description="Summary regeneration cadence in turns")
    query_rewrite_turns: int = Field(default=2, description="Turns used to rewrite queries")

    # ===== File Storage Settings =====
    aws_access_key_id: str | None = Field(default=None, description="AWS access key ID")
    aws_secret_access_key: str | None = Field(default=None, description="AWS secret access key")
    s3_bucket_name: str = Field(default="user-docs", description="S3 bucket name")
    s3_region: str = Field(default="us-east-1", description="S3 region")
    s3_endpoint_url: str | None = Field(default=None, description="S3 endpoint URL")
    signed_url_ttl: int = Field(default=86400, description="Signed URL lifetime in seconds")

    # ===== Redis Configuration =====
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    stream_session_ttl: int = Field(default=3600, description="Stream session TTL in seconds")
    persist_partial_on_cancel: bool = Field(
        default=False, description="Persist partial streamed answers when the client cancels"
    )

    # ===== Application Limits =====
    max_file_size: int = Field(default=10485760, description="Maximum file size in bytes (10MB)")
    max_documents_per_chat: int = Field(default=5, description="Upload cap per chat")
    chat_title_max_length: int = Field(default=28, description="Chat title length")
    default_chat_title: str = Field(default="New Chat", description="Title of an unnamed chat")

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")
    sentry_dsn: str | None = Field(default=None, description="Sentry DSN for error tracking")

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_ai_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_file_storage(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key and self.s3_bucket_name)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            if lv in ["test"]:
                return "testing"
        return v

    @field_validator("max_file_size")
    @classmethod
    def validate_file_size(cls, v):
        if v > 100 * 1024 * 1024:
            raise ValueError("Maximum file size cannot exceed 100MB")
        return v

    @field_validator("max_documents_per_chat", "retrieval_top_k", "chunk_size")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_chunking(self):
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be non-negative and smaller than chunk_size")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.is_production and not settings.gemini_api_key:
            errors.append("GEMINI_API_KEY is required in production")
        if settings.is_production and not settings.has_file_storage:
            errors.append("AWS credentials are required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "ai_enabled": settings.has_ai_enabled,
            "file_storage": settings.has_file_storage,
            "vector_store": settings.chroma_mode.value,
            "monitoring_enabled": bool(settings.sentry_dsn),
            "environment": settings.environment.value,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment.value,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "database_configured": bool(settings.database_url),
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
    "ChromaModeEnum",
]
