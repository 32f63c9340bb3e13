"""Utility modules for repo-context."""

from .cancellation import CancellationToken, install_sigint_handler

__all__ = ["CancellationToken", "install_sigint_handler"]
