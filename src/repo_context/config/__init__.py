"""Configuration for repo-context."""

from .settings import RepoContextSettings

__all__ = ["RepoContextSettings"]
