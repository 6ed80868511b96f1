"""Configuration with Pydantic Settings and validation."""

from .settings import (
    ChunkingConfig,
    ContextConfig,
    IndexConfig,
    ModelEndpoint,
    ModelsConfig,
    ObservabilityConfig,
    RetrievalConfig,
    Settings,
)

__all__ = [
    "Settings",
    "ModelEndpoint",
    "ModelsConfig",
    "ChunkingConfig",
    "IndexConfig",
    "RetrievalConfig",
    "ContextConfig",
    "ObservabilityConfig",
]
