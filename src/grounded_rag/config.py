"""Configuration models for the RAG pipeline."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from grounded_rag.errors import ConfigError

_ENGINE_NAME = re.compile(r"^[a-z][a-z0-9-]{2,49}$")
_RESERVED_NAMES = frozenset({"health", "metrics", "admin", "docs", "system"})

ChunkingStrategy = Literal["fixed", "semantic", "recursive"]
RetrievalStrategy = Literal["vector", "keyword", "hybrid"]


class ChunkingConfig(BaseModel):
    """Configures token-bounded chunking."""

    max_tokens: int = Field(default=500, ge=1)
    overlap_tokens: int = Field(default=50, ge=0)
    min_tokens: int = Field(default=100, ge=0)
    strategy: ChunkingStrategy = "fixed"
    # Approximate words per token used by the fixed window.
    words_per_token: float = Field(default=0.75, gt=0.0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be less than max_tokens")
        return self


class RetrievalConfig(BaseModel):
    """Configures retrieval mode, cutoffs and fusion."""

    strategy: RetrievalStrategy = "vector"
    top_k: int = Field(default=5, ge=1, le=100)
    score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    rrf_k: int = Field(default=60, ge=1)
    parent_retrieval: bool = False


class QueryTransformConfig(BaseModel):
    rewrite: bool = False
    expand: bool = False
    decompose: bool = False
    hyde: bool = False
    max_expansions: int = Field(default=3, ge=1, le=10)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)


class CompressionConfig(BaseModel):
    """Selects the contextual compression strategy (None disables it)."""

    strategy: Literal["llm", "embeddings"] | None = None
    max_tokens_per_doc: int | None = Field(default=None, ge=1)


class MemoryConfig(BaseModel):
    max_messages: int = Field(default=10, ge=1)


class AgentConfig(BaseModel):
    """Configures generation and the tool-use loop."""

    max_iterations: int = Field(default=5, ge=1)
    context_max_tokens: int = Field(default=4000, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    system_prompt: str | None = None


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "pretty"] = "json"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class EngineConfig(BaseModel):
    """Top-level configuration for one RAG engine instance."""

    name: str = "default-agent"
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    query_transform: QueryTransformConfig = Field(default_factory=QueryTransformConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _ENGINE_NAME.match(value):
            raise ValueError(
                "name must be lowercase alphanumeric with hyphens, 3-50 chars"
            )
        if value in _RESERVED_NAMES:
            raise ValueError(f"name cannot be one of: {', '.join(sorted(_RESERVED_NAMES))}")
        return value

    @classmethod
    def from_env(cls, base: EngineConfig | None = None) -> EngineConfig:
        """Overlay `RAG_*` environment variables on top of `base`."""
        data = (base or cls()).model_dump()
        overrides = {
            ("retrieval", "top_k"): os.getenv("RAG_TOP_K"),
            ("retrieval", "score_threshold"): os.getenv("RAG_SCORE_THRESHOLD"),
            ("retrieval", "strategy"): os.getenv("RAG_RETRIEVAL_STRATEGY"),
            ("logging", "level"): os.getenv("RAG_LOG_LEVEL"),
        }
        for (section, key), value in overrides.items():
            if value is not None and value != "":
                data[section][key] = value
        return cls.model_validate(data)


def load_engine_config(path: str | Path) -> EngineConfig:
    """Read and validate a JSON engine configuration file."""

    file_path = Path(path)
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {file_path}: {exc}") from exc
    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config file {file_path}: {exc}") from exc
