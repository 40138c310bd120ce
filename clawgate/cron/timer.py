"""Per-job wake timers.

One cancellable ``asyncio.TimerHandle`` per job id. Arming a job always
cancels its previous handle first, so a job never has two live timers.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .schedule import now_ms as _default_now_ms

logger = logging.getLogger(__name__)

# Maximum single wait (~24.8 days); longer waits wake early and re-arm
MAX_TIMEOUT_MS = 2**31 - 1


class CronTimers:
    """
    Timer index for cron jobs.

    When a job's timer fires, ``on_due(job_id)`` runs in its own task. The
    tasks are tracked but never awaited by ``cancel_all``.
    """

    def __init__(
        self,
        on_due: Callable[[str], Awaitable[None]],
        now_ms: Callable[[], int] = _default_now_ms,
    ):
        self._on_due = on_due
        self._now_ms = now_ms
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._fire_at: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # arm / cancel
    # ------------------------------------------------------------------
    def arm(self, job_id: str, at_ms: int) -> None:
        """Arm (or re-arm) the timer for one job."""
        self.cancel(job_id)

        delay_ms = min(max(0, at_ms - self._now_ms()), MAX_TIMEOUT_MS)
        loop = asyncio.get_running_loop()
        self._handles[job_id] = loop.call_later(delay_ms / 1000, self._fire, job_id)
        self._fire_at[job_id] = at_ms
        logger.debug(f"Timer armed for job {job_id} in {delay_ms / 1000:.1f}s")

    def cancel(self, job_id: str) -> None:
        handle = self._handles.pop(job_id, None)
        self._fire_at.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._fire_at.clear()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def is_armed(self, job_id: str) -> bool:
        return job_id in self._handles

    def armed(self) -> list[str]:
        return list(self._handles)

    def next_fire_ms(self) -> int | None:
        return min(self._fire_at.values(), default=None)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for fired callbacks still running (used by tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "armed": len(self._handles),
            "inFlight": len(self._tasks),
            "nextFireMs": self.next_fire_ms(),
        }
        nxt = status["nextFireMs"]
        if nxt is not None:
            status["timeUntilMs"] = max(0, nxt - self._now_ms())
        return status

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _fire(self, job_id: str) -> None:
        at_ms = self._fire_at.get(job_id)
        self._handles.pop(job_id, None)
        self._fire_at.pop(job_id, None)
        if at_ms is None:
            return

        if self._now_ms() < at_ms:
            # clamped wait or early wake-up
            self.arm(job_id, at_ms)
            return

        task = asyncio.get_running_loop().create_task(self._run(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: str) -> None:
        try:
            await self._on_due(job_id)
        except asyncio.CancelledError:
            logger.debug(f"Timer callback cancelled for job {job_id}")
            raise
        except Exception as e:
            logger.error(f"Error in timer callback for job {job_id}: {e}", exc_info=True)
