"""
Application Configuration

Centralized settings for the docintel service using Pydantic BaseSettings.
All values are loaded from environment variables or a .env file.

Required env vars (no defaults):
    POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_DB

Everything else has a default tuned for the hosted OpenAI + local
SPLADE setup described in the README of the deployment.
"""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Groups:
        - Database: pgvector-backed vector store.
        - Providers: OpenAI chat/embedding models, local sparse model.
        - Retrieval: namespaces, hybrid weighting, settle polling.
        - Guardrail: abstention thresholds for the answer agent.
        - Extraction: model input ceiling and batch failure policy.
    """

    PROJECT_NAME: str = "docintel"

    # Logging
    LOG_LEVEL: str = "INFO"
    # Third-party loggers, set via JSON, e.g. LIBRARY_LOG_LEVELS='{"httpx": "DEBUG"}'
    LIBRARY_LOG_LEVELS: dict[str, str] = {
        "uvicorn": "INFO",
        "uvicorn.access": "INFO",
        "sqlalchemy.engine": "WARNING",
        "httpx": "WARNING",
        "openai": "WARNING",
        "sentence_transformers": "WARNING",
    }

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str

    # Providers
    OPENAI_API_KEY: str | None = None
    OPENAI_CHAT_MODEL: str = "gpt-4.1-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    DENSE_BACKEND: Literal["openai", "local"] = "openai"
    LOCAL_DENSE_MODEL: str = "all-MiniLM-L6-v2"
    DENSE_DIMENSIONS: int = 1536
    SPARSE_MODEL: str = "naver/splade-cocondenser-ensembledistil"
    SPARSE_DIMENSIONS: int = 30522

    # Retrieval
    VECTOR_NAMESPACE: str = "tenant-demo"
    DEFAULT_TENANT: str = "tenant-demo"
    HYBRID_ALPHA: float = 0.5
    EMBED_BATCH_SIZE: int = 50
    SETTLE_TIMEOUT_SECONDS: float = 5.0
    SETTLE_POLL_INTERVAL_SECONDS: float = 0.25

    # Chunking
    CHUNK_TARGET_CHARS: int = 1200
    CHUNK_OVERLAP_CHARS: int = 180

    # Agent
    AGENT_TOP_K: int = 6
    AGENT_MAX_SOURCES: int = 16
    AGENT_MAX_STEPS: int = 6

    # Guardrail
    GUARDRAIL_MIN_TOP_SCORE: float = 0.85
    GUARDRAIL_LOW_CONFIDENCE: float = 0.4
    GUARDRAIL_CAUTION_CONFIDENCE: float = 0.6

    # Extraction
    EXTRACTION_MAX_CHARS: int = 40_000
    EXTRACTION_FAILURE_POLICY: Literal["fail_fast", "collect"] = "fail_fast"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def REGISTRY_NAMESPACE(self) -> str:
        """Namespace holding document registry entries."""
        return f"{self.VECTOR_NAMESPACE}:registry"

    def tenant_namespace(self, tenant_id: str) -> str:
        """Namespace holding one tenant's chunk records."""
        return f"{self.VECTOR_NAMESPACE}:{tenant_id}"


settings = Settings()  # type: ignore[call-arg]
