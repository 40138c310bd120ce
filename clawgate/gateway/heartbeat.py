"""
On-demand heartbeat wake-ups.

``request_heartbeat_now`` asks the main session's reply loop to process
pending system events right away instead of waiting for its next tick.
Requests arriving within the coalesce window collapse into one handler call.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_COALESCE_MS = 250

HeartbeatHandler = Callable[[str], Awaitable[Any]]


class HeartbeatWake:
    """
    Coalescing heartbeat trigger.

    Usage:
        async def run_heartbeat(reason: str) -> None:
            ...  # process the main session's pending events

        wake = HeartbeatWake(run_heartbeat)
        wake.request_heartbeat_now(reason="cron:job-1")
    """

    def __init__(
        self,
        handler: Optional[HeartbeatHandler] = None,
        coalesce_ms: int = DEFAULT_COALESCE_MS,
    ):
        self._handler = handler
        self._interval = coalesce_ms / 1000.0
        self._timer: asyncio.Task | None = None
        self._reasons: list[str] = []
        self._running = False
        self._rerun = False

    def set_handler(self, handler: Optional[HeartbeatHandler]) -> None:
        self._handler = handler

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def request_heartbeat_now(self, reason: str = "requested") -> None:
        """Schedule a heartbeat (coalesced with other pending requests)."""
        self._reasons.append(reason)
        if self._running:
            self._rerun = True
            return
        if self.pending:
            return
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_delay())

    async def _fire_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            return
        await self._run()

    async def _run(self) -> None:
        reasons, self._reasons = self._reasons, []
        reason = reasons[0] if len(reasons) == 1 else f"coalesced:{len(reasons)}"

        if self._handler is None:
            logger.debug(f"Heartbeat requested without handler (reason={reason})")
            return

        self._running = True
        try:
            await self._handler(reason)
        except Exception as e:
            logger.error(f"Heartbeat handler failed (reason={reason}): {e}", exc_info=True)
        finally:
            self._running = False

        if self._rerun:
            self._rerun = False
            self._timer = asyncio.get_running_loop().create_task(self._fire_after_delay())

    async def stop(self) -> None:
        """Cancel a pending wake-up"""
        if self._timer:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        self._reasons.clear()
        self._rerun = False
