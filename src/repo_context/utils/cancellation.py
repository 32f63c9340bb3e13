"""Cooperative cancellation for long-running loops."""

import signal
import threading
from types import FrameType

from loguru import logger


class CancellationToken:
    """Thread-safe cancellation flag passed into long-running operations.

    The review loop checks the token between iterations and around file
    reads; it never interrupts an in-flight LLM request.

    Example:
        >>> token = CancellationToken()
        >>> token.cancelled
        False
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    def reset(self) -> None:
        """Clear the flag so the token can be reused for a new run."""
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; returns the flag."""
        return self._event.wait(timeout)


def install_sigint_handler(token: CancellationToken) -> None:
    """Route SIGINT to ``token``.

    First Ctrl+C cancels the token so running reviews stop between steps;
    a second Ctrl+C raises ``KeyboardInterrupt`` to force exit.
    Must be called from the main thread.
    """

    def _handler(signum: int, frame: FrameType | None) -> None:
        if token.cancelled:
            logger.warning("Second interrupt received, forcing exit")
            raise KeyboardInterrupt
        token.cancel()
        logger.warning("Shutting down... (Ctrl+C again to force exit)")

    signal.signal(signal.SIGINT, _handler)
