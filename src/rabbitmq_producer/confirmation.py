"""
Confirmation
One-shot result of an asynchronous broker request.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Confirmation:
    """
    Result cell resolved by a protocol callback.

    Starts pending and is resolved exactly once, either as succeeded or as
    failed with the broker-supplied reason. The first resolution wins and
    the cell is read-only afterwards. Callbacks fire inside loop pumps on
    the calling thread, so no synchronization is needed.
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def __init__(self, name: str = ""):
        self.name = name
        self._state = self.PENDING
        self._error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self._state != self.PENDING

    @property
    def succeeded(self) -> bool:
        return self._state == self.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self._state == self.FAILED

    @property
    def error(self) -> Optional[str]:
        """Failure reason, None unless failed."""
        return self._error

    def succeed(self) -> bool:
        """Resolve as succeeded. Returns False if already resolved."""
        return self._resolve(self.SUCCEEDED, None)

    def fail(self, reason: str) -> bool:
        """Resolve as failed. Returns False if already resolved."""
        return self._resolve(self.FAILED, str(reason))

    def _resolve(self, state: str, error: Optional[str]) -> bool:
        if self.done:
            logger.debug(
                f"Ignoring late {state} resolution of {self.name or 'request'} "
                f"(already {self._state})"
            )
            return False
        self._state = state
        self._error = error
        return True

    def __repr__(self) -> str:
        if self.failed:
            return f"<Confirmation {self.name!r} failed: {self._error}>"
        return f"<Confirmation {self.name!r} {self._state}>"
