"""Cooperative cancellation signal shared by the batch orchestrator and video poller."""

import asyncio
from typing import Optional

from visioncore.services.exceptions import JobCancelledError


class CancellationToken:
    """One-shot cancellation signal.

    Set it when the caller abandons a run (e.g. the user navigates away) so that
    pending delays wake up early and no further remote calls are issued.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            JobCancelledError: If the token is (or becomes) cancelled
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
