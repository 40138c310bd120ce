"""Next-run computation for at/every schedules."""
from __future__ import annotations

import time

from .types import AtSchedule, CronSchedule, EverySchedule


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_next_run(
    schedule: CronSchedule | None,
    now_ms: int,
    *,
    last_run_at_ms: int | None = None,
) -> int | None:
    """
    Compute the next fire time (epoch ms) or None when the job is done.

    ``at``: fires at ``at_ms`` unless it already ran at or after that time.
    A past-due one-shot that never ran stays due, so it fires on start.

    ``every``: the first slot ``anchor_ms + k * every_ms`` strictly after
    ``now_ms``. Slots missed while the process was down are not replayed.
    """
    if isinstance(schedule, AtSchedule):
        if last_run_at_ms is not None and last_run_at_ms >= schedule.at_ms:
            return None
        return schedule.at_ms

    if isinstance(schedule, EverySchedule):
        every = schedule.every_ms
        if every <= 0:
            return None
        anchor = schedule.anchor_ms if schedule.anchor_ms is not None else now_ms
        if now_ms < anchor:
            return anchor
        elapsed = now_ms - anchor
        return anchor + (elapsed // every + 1) * every

    return None


def is_due(next_run_at_ms: int | None, now_ms: int) -> bool:
    return next_run_at_ms is not None and now_ms >= next_run_at_ms
