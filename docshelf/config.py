# docshelf/config.py
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # AI text service (chat completions)
    ai_token: Optional[str] = Field(None)
    ai_base_url: str = Field("https://models.inference.ai.azure.com")
    ai_model: str = Field("gpt-4.1-mini")
    ai_timeout: Optional[float] = Field(None)  # None: no client-side timeout
    summary_max_chars: int = Field(12000)
    translate_max_chars: int = Field(6000)
    summary_max_tokens: int = Field(300)
    translate_max_tokens: int = Field(700)

    # Object storage
    storage_bucket: str = Field("documents")
    uploads_prefix: str = Field("uploads")
    list_limit: int = Field(200)
    signed_url_ttl: int = Field(60)  # seconds, enforced by the store
    max_upload_size: int = Field(50 * 1024 * 1024)

    # MinIO / S3 credentials
    minio_endpoint: str = Field("localhost:9000")
    minio_access_key: Optional[str] = Field(None)
    minio_secret_key: Optional[str] = Field(None)
    minio_secure: bool = Field(False)
    minio_region: Optional[str] = Field(None)

    # Metadata DB
    database_url: str = Field("postgresql+asyncpg://localhost:5432/docshelf")
    documents_table: str = Field("documents")
    create_tables: bool = Field(True)

    # CORS
    cors_origins: List[str] = Field(["*"])

    prometheus_enabled: bool = Field(True)
    host: str = Field("0.0.0.0")
    port: int = Field(8000)
    log_level: str = Field("info")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("cors_origins", mode="before")
    def _split_cors_origins(cls, v):
        """
        Allows CORS_ORIGINS as comma-separated string in env, or as a list.
        """
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("uploads_prefix", mode="before")
    def _strip_prefix_slashes(cls, v):
        if v is None:
            return "uploads"
        return str(v).strip().strip("/") or "uploads"

    @field_validator("ai_token", mode="before")
    def _blank_token_is_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("signed_url_ttl", "list_limit", "max_upload_size", mode="before")
    def _positive_int(cls, v):
        """
        Accepts the env value as string or int and ensures it's a positive int.
        """
        if isinstance(v, str) and v.strip().isdigit():
            v = int(v)
        if not isinstance(v, int) or v <= 0:
            raise ValueError("must be a positive integer")
        return v


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings for the server entry point. Library code takes Settings explicitly."""
    return Settings()
