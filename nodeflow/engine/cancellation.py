"""
One-shot cancellation signal for a workflow run.
"""

import asyncio
from typing import Optional

from nodeflow.engine.errors import RunCancelled


class CancelToken:
    """
    Cooperative cancellation token.

    A token is created for exactly one run. Once fired it stays fired and
    cannot be reset; a new run gets a new token.

    Usage:
        token = CancelToken()
        ...
        token.raise_if_cancelled()   # at a checkpoint
        await token.wait()           # race against in-flight work
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> bool:
        """
        Fire the token.

        Returns:
            True if this call fired it, False if it had already fired
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, node_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise RunCancelled(node_id)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"
