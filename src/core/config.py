"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a local .env file)
once at startup and cached for the lifetime of the process.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ============================================
    # Application
    # ============================================
    app_name: str = "Domain RAG Core"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["*"]

    # ============================================
    # Chunking
    # ============================================
    max_chunk_size: int = Field(default=1000, ge=1)
    overlap_size: int = Field(default=200, ge=0)
    min_chunk_size: int = Field(default=100, ge=0)

    # ============================================
    # Retrieval / Synthesis
    # ============================================
    default_top_k: int = Field(default=5, ge=1, le=20)
    min_score: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens_per_context: int = Field(default=4000, ge=1)
    max_matches_per_document: int = Field(
        default=2, ge=1, description="Diversity cap: matches allowed from one document"
    )
    retrieval_fetch_multiplier: int = Field(default=3, ge=1)

    # ============================================
    # OpenAI / Azure OpenAI
    # ============================================
    openai_api_key: str = ""
    openai_organization: str | None = None
    openai_base_url: str | None = None

    # Azure takes precedence when an endpoint is configured
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_api_version: str = "2025-04-01-preview"

    embedding_model: str = Field(
        default="text-embedding-3-small", description="Embedding model name"
    )
    embedding_dimensions: int = Field(
        default=1536, description="Embedding vector dimensions (must match model)"
    )
    completion_model: str = "gpt-4o-mini"
    completion_max_tokens: int = 1000
    completion_temperature: float = 0.7

    # ============================================
    # Vector Store
    # ============================================
    vector_store_backend: str = "qdrant"  # "qdrant" or "memory"
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_collection: str = "rag_documents"

    # ============================================
    # External call policy
    # ============================================
    provider_timeout_seconds: float = 60.0
    provider_max_retries: int = Field(default=3, ge=1)
    provider_retry_initial_seconds: float = 1.0
    provider_retry_max_seconds: float = 20.0
    provider_requests_per_minute: int = 3000

    # ============================================
    # Ingestion backpressure
    # ============================================
    ingest_batch_size: int = Field(default=5, ge=3, le=20)
    ingest_documents_per_second: float = Field(default=10.0, gt=0)

    # ============================================
    # Rate limiting
    # ============================================
    rate_limit_backend: str = "local"  # "local" or "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_auth: str = ""

    @property
    def redis_url(self) -> str:
        """Construct Redis URL with optional auth."""
        auth = f":{self.redis_auth}@" if self.redis_auth else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/0"

    # ============================================
    # Langfuse (Observability)
    # ============================================
    langfuse_host: str = "http://localhost:3000"
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""

    # ============================================
    # Logging
    # ============================================
    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"

    @field_validator("vector_store_backend", "rate_limit_backend", "log_format", mode="before")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        """Lower-case enumerated string options."""
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_chunk_sizes(self) -> "Settings":
        """Chunk sizes must leave room for overlap and the minimum size."""
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError("overlap_size must be smaller than max_chunk_size")
        if self.min_chunk_size > self.max_chunk_size - self.overlap_size:
            raise ValueError("min_chunk_size must not exceed max_chunk_size - overlap_size")
        return self

    @property
    def uses_azure(self) -> bool:
        """Whether completions and embeddings go through Azure OpenAI."""
        return bool(self.azure_openai_endpoint)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
