"""
Tests for next-run computation
"""
import pytest

from clawgate.cron import AtSchedule, EverySchedule
from clawgate.cron.schedule import compute_next_run, is_due


class TestAtSchedule:

    def test_future_one_shot(self):
        assert compute_next_run(AtSchedule(at_ms=5_000), 1_000) == 5_000

    def test_past_due_one_shot_that_never_ran_stays_due(self):
        assert compute_next_run(AtSchedule(at_ms=5_000), 9_000) == 5_000

    def test_one_shot_that_already_ran_is_done(self):
        assert compute_next_run(AtSchedule(at_ms=5_000), 9_000, last_run_at_ms=5_010) is None

    def test_run_before_target_does_not_count(self):
        assert compute_next_run(AtSchedule(at_ms=5_000), 1_000, last_run_at_ms=900) == 5_000


class TestEverySchedule:

    def test_anchor_in_future_is_first_slot(self):
        assert compute_next_run(EverySchedule(every_ms=100, anchor_ms=1_000), 500) == 1_000

    def test_next_slot_strictly_after_now(self):
        schedule = EverySchedule(every_ms=100, anchor_ms=1_000)
        assert compute_next_run(schedule, 1_000) == 1_100
        assert compute_next_run(schedule, 1_050) == 1_100
        assert compute_next_run(schedule, 1_100) == 1_200

    def test_slots_do_not_drift_with_late_runs(self):
        schedule = EverySchedule(every_ms=1_000, anchor_ms=0)
        # a run that finished 370ms late still lands on the grid
        assert compute_next_run(schedule, 5_370) == 6_000

    def test_missed_slots_are_not_replayed(self):
        schedule = EverySchedule(every_ms=1_000, anchor_ms=0)
        assert compute_next_run(schedule, 60_500) == 61_000

    def test_missing_anchor_counts_from_now(self):
        assert compute_next_run(EverySchedule(every_ms=250), 10_000) == 10_250

    @pytest.mark.parametrize("every_ms", [0, -1])
    def test_non_positive_interval_never_runs(self, every_ms):
        assert compute_next_run(EverySchedule(every_ms=every_ms, anchor_ms=0), 100) is None


def test_unknown_schedule_never_runs():
    assert compute_next_run(None, 100) is None


@pytest.mark.parametrize(
    "next_run,now,expected",
    [
        (None, 100, False),
        (200, 100, False),
        (100, 100, True),
        (50, 100, True),
    ],
)
def test_is_due(next_run, now, expected):
    assert is_due(next_run, now) is expected
