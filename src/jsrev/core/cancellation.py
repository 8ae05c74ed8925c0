"""Cooperative cancellation token for analysis runs.

The orchestrator checks the token before every new chunk dispatch.
Calls already in flight are allowed to finish or fail on their own;
no analyzer call is ever terminated by the token.
"""

import logging
import threading

from jsrev.core.exceptions import CancelledError

__all__ = [
    "CancellationToken",
]

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag.

    Uses threading.Event so a run can be cancelled from a signal handler
    or another thread while the event loop keeps dispatching.

    Usage:
        token = CancellationToken()

        # In the orchestrator, before each dispatch:
        if token.is_cancelled:
            return

        # From anywhere:
        token.request_cancel()

    """

    def __init__(self) -> None:
        """Initialize the token in the non-cancelled state."""
        self._cancel_event = threading.Event()

    def __repr__(self) -> str:
        """Return string representation for logging."""
        return f"CancellationToken(cancelled={self.is_cancelled})"

    @property
    def is_cancelled(self) -> bool:
        """Return True if request_cancel() was called. Thread-safe."""
        return self._cancel_event.is_set()

    def request_cancel(self) -> None:
        """Request cancellation. Thread-safe, idempotent."""
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested")
        self._cancel_event.set()

    def check_cancelled(self) -> None:
        """Raise CancelledError if cancelled.

        Raises:
            CancelledError: If cancellation was requested.

        """
        if self.is_cancelled:
            raise CancelledError("Analysis cancelled")
