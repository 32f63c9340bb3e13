"""Runtime settings for repo-context, resolved from the environment."""

import json
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .defaults import (
    CANDIDATE_PATHS_MAX,
    DEFAULT_CACHE_NAMESPACE,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CONTEXT_MAX_CHARS,
    DEFAULT_DISCOVERY_DIRS,
    DEFAULT_DISCOVERY_EXTENSIONS,
    DEFAULT_EMBED_CHUNK_OVERLAP,
    DEFAULT_EMBED_CHUNK_SIZE,
    DEFAULT_EMBED_MAX_CHUNKS,
    DEFAULT_EMBED_MIN_QUESTION_LENGTH,
    DEFAULT_EMBED_TOP_K,
    DEFAULT_FALLBACK_CONTEXT_FILES,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_EMBED_MODEL,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_RETRIES,
    DEFAULT_OLLAMA_TEMPERATURE,
    DEFAULT_OLLAMA_TIMEOUT,
    DEFAULT_REFERENCE_FILES,
    DEFAULT_REVIEW_EXCLUDED_PATTERNS,
    DEFAULT_REVIEW_FOCUS,
    DEFAULT_REVIEW_MAX_FILE_SIZE,
    DEFAULT_REVIEW_MAX_ITERATIONS,
    DEFAULT_REVIEW_MAX_PATHS,
    DISCOVERY_PATHS_MAX,
    VECTOR_STORE_FILENAME,
)

CommaList = Annotated[list[str], NoDecode]


class RepoContextSettings(BaseSettings):
    """Settings for the context pipeline and review agent.

    Every field can be overridden through a ``REPO_CONTEXT_``-prefixed
    environment variable (e.g. ``REPO_CONTEXT_CONTEXT_MAX_CHARS=20000``) or a
    ``.env`` file. List fields accept either JSON arrays or comma-separated
    strings.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPO_CONTEXT_",
        env_file=".env",
        extra="ignore",
    )

    repo_root: Path = Field(default_factory=Path.cwd)

    # Context assembly
    reference_files: CommaList = Field(
        default_factory=lambda: list(DEFAULT_REFERENCE_FILES)
    )
    fallback_context_files: CommaList = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_CONTEXT_FILES)
    )
    context_max_chars: int = Field(default=DEFAULT_CONTEXT_MAX_CHARS, gt=0)

    # Discovery
    discovery_enabled: bool = True
    discovery_dirs: CommaList = Field(
        default_factory=lambda: list(DEFAULT_DISCOVERY_DIRS)
    )
    discovery_extensions: CommaList = Field(
        default_factory=lambda: list(DEFAULT_DISCOVERY_EXTENSIONS)
    )
    candidate_paths_max: int = Field(default=CANDIDATE_PATHS_MAX, gt=0)
    discovery_paths_max: int = Field(default=DISCOVERY_PATHS_MAX, gt=0)

    # LLM service
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_code_model: str | None = None
    ollama_embed_model: str = DEFAULT_OLLAMA_EMBED_MODEL
    ollama_timeout: float = Field(default=DEFAULT_OLLAMA_TIMEOUT, gt=0)
    ollama_temperature: float = Field(default=DEFAULT_OLLAMA_TEMPERATURE, ge=0.0)
    ollama_retries: int = Field(default=DEFAULT_OLLAMA_RETRIES, ge=0)

    # Embedding index
    embed_enabled: bool = False
    embed_top_k: int = Field(default=DEFAULT_EMBED_TOP_K, ge=0)
    embed_chunk_size: int = Field(default=DEFAULT_EMBED_CHUNK_SIZE, gt=0)
    embed_chunk_overlap: int = Field(default=DEFAULT_EMBED_CHUNK_OVERLAP, ge=0)
    embed_max_chunks: int = Field(default=DEFAULT_EMBED_MAX_CHUNKS, gt=0)
    embed_min_question_length: int = Field(
        default=DEFAULT_EMBED_MIN_QUESTION_LENGTH, ge=0
    )

    # Review loop
    review_max_iterations: int = Field(default=DEFAULT_REVIEW_MAX_ITERATIONS, gt=0)
    review_max_paths: int = Field(default=DEFAULT_REVIEW_MAX_PATHS, gt=0)
    review_max_file_size: int = Field(default=DEFAULT_REVIEW_MAX_FILE_SIZE, gt=0)
    review_focus: str = DEFAULT_REVIEW_FOCUS
    review_excluded_patterns: CommaList = Field(
        default_factory=lambda: list(DEFAULT_REVIEW_EXCLUDED_PATTERNS)
    )

    # Cache
    cache_enabled: bool = True
    cache_namespace: str = DEFAULT_CACHE_NAMESPACE
    cache_ttl_seconds: int = Field(default=DEFAULT_CACHE_TTL_SECONDS, ge=0)
    cache_db_path: Path | None = None

    log_level: str = "INFO"

    @field_validator(
        "reference_files",
        "fallback_context_files",
        "discovery_dirs",
        "discovery_extensions",
        "review_excluded_patterns",
        mode="before",
    )
    @classmethod
    def _split_comma_list(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return value

    @field_validator("discovery_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext if ext.startswith(".") else f".{ext}" for ext in value]

    @field_validator("repo_root")
    @classmethod
    def _expand_repo_root(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_chunk_window(self) -> "RepoContextSettings":
        if self.embed_chunk_overlap >= self.embed_chunk_size:
            raise ValueError(
                f"embed_chunk_overlap ({self.embed_chunk_overlap}) must be smaller "
                f"than embed_chunk_size ({self.embed_chunk_size})"
            )
        return self

    @property
    def review_model(self) -> str:
        """Model used for per-file review steps (falls back to the chat model)."""
        return self.ollama_code_model or self.ollama_model

    @property
    def vector_store_path(self) -> Path:
        return self.repo_root / VECTOR_STORE_FILENAME
