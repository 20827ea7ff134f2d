"""Debounced remote persistence for progress snapshots."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()

WriteFn = Callable[[dict[str, Any]], Awaitable[None]]


class DebouncedWriter:
    """Coalesces rapid successive writes into one.

    ``schedule`` replaces any pending payload and restarts the delay; only
    the latest payload is written when the delay elapses (last write wins).
    Write failures are logged and dropped, never retried.

    Args:
        write_fn: Coroutine function performing the actual write.
        delay_seconds: Quiet period before a scheduled write fires.
    """

    def __init__(self, write_fn: WriteFn, delay_seconds: float = 10.0):
        self._write_fn = write_fn
        self.delay_seconds = delay_seconds
        self._payload: dict[str, Any] | None = None
        self._timer: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._payload is not None

    def schedule(self, payload: dict[str, Any]) -> None:
        """Schedule ``payload`` for writing, superseding any pending one.

        Must be called from within a running event loop.
        """
        self._payload = payload
        self._cancel_timer()
        self._timer = asyncio.create_task(self._write_after_delay())

    async def flush(self) -> None:
        """Write the pending payload immediately, if any."""
        self._cancel_timer()
        await self._write_pending()

    def cancel(self) -> None:
        """Drop the pending payload without writing it."""
        self._cancel_timer()
        self._payload = None

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _write_after_delay(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        # Detach before writing so a schedule() during the write starts a new timer
        self._timer = None
        await self._write_pending()

    async def _write_pending(self) -> None:
        payload, self._payload = self._payload, None
        if payload is None:
            return
        try:
            await self._write_fn(payload)
        except Exception as e:
            logger.warning("debounced_write_failed", error=str(e))
