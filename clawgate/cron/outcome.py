"""
Outcome reporting: surfaces cron results in the main session.

A heartbeat request always directly follows a successful system event and
is never sent without one.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SUMMARY_TEMPLATE = "Cron: %s"
ERROR_SUMMARY_TEMPLATE = "Cron (error): %s"


def format_isolated_summary(status: str | None, summary: str | None) -> str | None:
    """Main-session text for an isolated run, or None without a summary."""
    text = (summary or "").strip()
    if not text:
        return None
    if status == "error":
        return ERROR_SUMMARY_TEMPLATE % text
    return SUMMARY_TEMPLATE % text


async def maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value


class OutcomeReporter:
    """Posts system events to the main session and wakes its reply loop."""

    def __init__(
        self,
        enqueue_system_event: Optional[Callable[[str], Any]],
        request_heartbeat_now: Optional[Callable[[], Any]],
        log: Any = None,
    ):
        self.enqueue_system_event = enqueue_system_event
        self.request_heartbeat_now = request_heartbeat_now
        self.log = log or logger

    async def post(self, text: str, *, heartbeat: bool = True) -> bool:
        """
        Enqueue ``text`` then (unless ``heartbeat`` is False) request a heartbeat.

        Returns:
            True if the system event was enqueued
        """
        if self.enqueue_system_event is None:
            self.log.warning("cron: enqueue_system_event not configured; dropping system event")
            return False

        try:
            await maybe_await(self.enqueue_system_event(text))
        except Exception as e:
            self.log.error(f"cron: failed to enqueue system event: {e}", exc_info=True)
            return False

        if heartbeat and self.request_heartbeat_now is not None:
            try:
                await maybe_await(self.request_heartbeat_now())
            except Exception as e:
                self.log.error(f"cron: heartbeat request failed: {e}", exc_info=True)
        return True

    async def report_isolated(self, result: dict[str, Any]) -> bool:
        """Surface an isolated run's summary; nothing is posted without one."""
        text = format_isolated_summary(result.get("status"), result.get("summary"))
        if text is None:
            return False
        return await self.post(text)
