"""
Configuration for docrag with Pydantic Settings and validation.

Settings are read from ``DOCRAG_``-prefixed environment variables (nested
sections use ``__``, e.g. ``DOCRAG_RETRIEVAL__TOP_K=5``) and passed
explicitly to the builder, retriever and service constructors.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".pptx", ".txt", ".md", ".csv")


class ModelEndpoint(BaseModel):
    """Configuration for a model endpoint."""

    name: str = Field(..., description="Model name (e.g., 'text-embedding-3-large')")
    base_url: str = Field(
        "https://api.openai.com/v1",
        description="OpenAI-compatible API root, or 'local' for sentence-transformers",
    )
    api_key: str | None = Field(None, description="API key if required")
    timeout: float = Field(60.0, gt=0, description="Per-request timeout in seconds")
    max_attempts: int = Field(4, gt=0, description="Attempts before a transient error is fatal")
    backoff_base: float = Field(0.3, ge=0, description="First retry delay in seconds")
    backoff_max: float = Field(10.0, ge=0, description="Upper bound for a single retry delay")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if v != "local" and not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https:// (or be 'local')")
        return v.rstrip("/")

    @property
    def is_local(self) -> bool:
        return self.base_url == "local"


class ModelsConfig(BaseModel):
    """Embedding and generation endpoints."""

    embeddings: ModelEndpoint = Field(
        default_factory=lambda: ModelEndpoint(name="text-embedding-3-large")
    )
    chat: ModelEndpoint = Field(
        default_factory=lambda: ModelEndpoint(name="gpt-5", timeout=120.0)
    )


class ChunkingConfig(BaseModel):
    """Configuration for the section-aware chunker."""

    target_chars: int = Field(1200, gt=0)
    overlap_chars: int = Field(200, ge=0)
    min_chunk_chars: int = Field(120, ge=1)

    @model_validator(mode="after")
    def check_overlap(self) -> "ChunkingConfig":
        if self.overlap_chars >= self.target_chars:
            raise ValueError("overlap_chars must be smaller than target_chars")
        return self


class IndexConfig(BaseModel):
    """Configuration for building and locating the index file."""

    docs_dir: Path | None = Field(None, description="Directory with source documents")
    index_file: Path | None = Field(None, description="Path of the JSON index file")
    embed_batch_size: int = Field(64, gt=0)
    extraction_timeout: float = Field(120.0, gt=0)
    supported_extensions: list[str] = Field(default_factory=lambda: list(SUPPORTED_EXTENSIONS))

    @field_validator("supported_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class RetrievalConfig(BaseModel):
    """Configuration for hybrid scoring, MMR and neighbor expansion."""

    top_k: int = Field(8, ge=0)
    neighbor_window: int = Field(1, ge=0)
    alpha: float = Field(0.7, ge=0.0, le=1.0, description="Semantic weight in the fused score")
    mmr_lambda: float = Field(0.6, ge=0.0, le=1.0)
    mmr_candidates: int = Field(40, gt=0)
    result_slack: int = Field(2, ge=0)


class ContextConfig(BaseModel):
    """Configuration for prompt context assembly."""

    budget: int = Field(3500, gt=0)
    unit: Literal["tokens", "chars"] = Field("tokens")
    separator: str = Field("\n\n---\n\n")
    min_truncation_chars: int = Field(200, ge=0)


class ObservabilityConfig(BaseModel):
    """Configuration for logging and probes."""

    log_level: str = Field("INFO")
    enable_metrics: bool = Field(True)
    enable_tracing: bool = Field(True)
    service_name: str = Field("docrag")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return v.upper()


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="DOCRAG_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
