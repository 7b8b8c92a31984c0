"""Cooperative cancellation for transcode runs."""

import asyncio

from portfolio_media.modules.transcoding.errors import TranscodeCancelled


class CancellationToken:
    """A one-shot signal the pipeline checks at every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Transcode cancelled by caller"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscodeCancelled(self._reason)

    async def wait(self) -> None:
        """Block until ``cancel()`` is called."""
        await self._event.wait()
