"""Core functionality for Repo Context."""

from .exceptions import (
    CacheError,
    ConfigError,
    DatabaseError,
    LLMError,
    LLMResponseError,
    LLMTimeoutError,
    PathSecurityError,
    RepoContextError,
    VectorStoreError,
)

__all__ = [
    "CacheError",
    "ConfigError",
    "DatabaseError",
    "LLMError",
    "LLMResponseError",
    "LLMTimeoutError",
    "PathSecurityError",
    "RepoContextError",
    "VectorStoreError",
]
