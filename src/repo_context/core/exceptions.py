"""Typed exception hierarchy for repo-context.

Hierarchy
---------
RepoContextError (base)
├── LLMError               : transport/protocol failures talking to the LLM service
│   ├── LLMTimeoutError
│   └── LLMResponseError   : non-2xx status or unparseable payload
├── DatabaseError          : SQLite storage layer errors
│   └── VectorStoreError
├── CacheError             : cache backend failures
├── ConfigError            : configuration / validation errors
└── PathSecurityError      : path escapes the repository root

Components that talk to the LLM catch ``LLMError`` at their own boundary and
degrade to a documented fallback value. Nothing in this hierarchy is meant to
reach the HTTP layer except ``ConfigError`` raised at startup.
"""

from typing import Any


class RepoContextError(Exception):
    """Base exception for repo-context."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── LLM layer ───────────────────────────────────────────────────────────


class LLMError(RepoContextError):
    """LLM request failed (transport, protocol or payload)."""

    pass


class LLMTimeoutError(LLMError):
    """LLM request exceeded the configured timeout."""

    pass


class LLMResponseError(LLMError):
    """LLM service answered with an error status or a malformed body."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


# ── Storage layer ───────────────────────────────────────────────────────


class DatabaseError(RepoContextError):
    """Database-related errors (SQLite storage layer)."""

    pass


class VectorStoreError(DatabaseError):
    """Vector store read or write failed."""

    pass


class CacheError(RepoContextError):
    """Cache backend operation failed."""

    pass


# ── Configuration layer ─────────────────────────────────────────────────


class ConfigError(RepoContextError):
    """Configuration / validation errors."""

    pass


# ── Filesystem layer ────────────────────────────────────────────────────


class PathSecurityError(RepoContextError):
    """A requested path resolves outside the repository root."""

    pass
