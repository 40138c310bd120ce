"""
Tests for CronService: scheduling, execution and outcome reporting
"""
import asyncio
import json
from unittest.mock import AsyncMock, Mock, call

import pytest

from clawgate.cron import (
    AgentTurnPayload,
    CronJobNotFoundError,
    CronService,
    CronStoreError,
    CronValidationError,
)
from clawgate.cron.schedule import now_ms


def make_service(store_path, log, **overrides):
    kwargs = dict(
        cron_enabled=True,
        log=log,
        enqueue_system_event=Mock(),
        request_heartbeat_now=Mock(),
        run_isolated_agent_job=AsyncMock(return_value={"status": "ok"}),
    )
    kwargs.update(overrides)
    return CronService(store_path, **kwargs)


def main_job(at_ms, text="hello", wake_mode="now"):
    return {
        "enabled": True,
        "schedule": {"kind": "at", "atMs": at_ms},
        "sessionTarget": "main",
        "wakeMode": wake_mode,
        "payload": {"kind": "systemEvent", "text": text},
    }


def isolated_job(at_ms, message="do it"):
    return {
        "enabled": True,
        "name": "weekly",
        "schedule": {"kind": "at", "atMs": at_ms},
        "sessionTarget": "isolated",
        "wakeMode": "now",
        "payload": {"kind": "agentTurn", "message": message, "deliver": False},
    }


class TestMainJobs:

    @pytest.mark.asyncio
    async def test_runs_one_shot_main_job_and_disables_it(self, store_path, log, wait_for):
        cron = make_service(store_path, log)
        await cron.start()

        at_ms = now_ms() + 50
        job = await cron.add(main_job(at_ms))
        assert job.state.next_run_at_ms == at_ms

        await wait_for(lambda: cron.enqueue_system_event.called)
        await cron.timers.drain()

        jobs = await cron.list(include_disabled=True)
        updated = next(j for j in jobs if j.id == job.id)
        assert updated.enabled is False
        assert updated.state.last_status == "ok"
        assert updated.state.next_run_at_ms is None
        cron.enqueue_system_event.assert_called_once_with("hello")
        cron.request_heartbeat_now.assert_called_once_with()
        assert not cron.timers.is_armed(job.id)
        cron.stop()

    @pytest.mark.asyncio
    async def test_heartbeat_follows_system_event(self, store_path, log, wait_for):
        calls = Mock()
        cron = make_service(
            store_path,
            log,
            enqueue_system_event=calls.enqueue,
            request_heartbeat_now=calls.heartbeat,
        )
        await cron.start()
        await cron.add(main_job(now_ms() + 20, wake_mode="next-heartbeat"))

        await wait_for(lambda: calls.heartbeat.called)
        await cron.timers.drain()

        assert calls.mock_calls == [call.enqueue("hello"), call.heartbeat()]
        cron.stop()

    @pytest.mark.asyncio
    async def test_system_event_text_is_passed_through_unchanged(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000, text="  remember the milk\n"))

        assert await cron.run(job.id) == {"ok": True, "ran": True}
        cron.enqueue_system_event.assert_called_once_with("  remember the milk\n")
        cron.stop()

    @pytest.mark.asyncio
    async def test_skips_main_jobs_with_blank_text(self, store_path, log, wait_for):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 20, text="   "))

        await wait_for(lambda: cron.jobs[job.id].state.last_status is not None)
        await cron.timers.drain()

        cron.enqueue_system_event.assert_not_called()
        cron.request_heartbeat_now.assert_not_called()
        jobs = await cron.list(include_disabled=True)
        assert jobs[0].state.last_status == "skipped"
        assert "non-empty" in jobs[0].state.last_error
        cron.stop()

    @pytest.mark.asyncio
    async def test_enqueue_failure_records_error_without_heartbeat(self, store_path, log, wait_for):
        cron = make_service(store_path, log, enqueue_system_event=Mock(side_effect=RuntimeError("queue full")))
        await cron.start()
        job = await cron.add(main_job(now_ms() + 20))

        await wait_for(lambda: cron.jobs[job.id].state.last_status is not None)
        await cron.timers.drain()

        cron.request_heartbeat_now.assert_not_called()
        assert cron.jobs[job.id].state.last_status == "error"
        cron.stop()


class TestIsolatedJobs:

    @pytest.mark.asyncio
    async def test_posts_summary_to_main(self, store_path, log, wait_for):
        runner = AsyncMock(return_value={"status": "ok", "summary": "done"})
        cron = make_service(store_path, log, run_isolated_agent_job=runner)
        await cron.start()
        job = await cron.add(isolated_job(now_ms() + 20))

        await wait_for(lambda: runner.await_count == 1)
        await cron.timers.drain()

        runner.assert_awaited_once()
        payload = runner.await_args.args[0]
        assert isinstance(payload, AgentTurnPayload)
        assert payload.message == "do it"
        assert payload.deliver is False
        cron.enqueue_system_event.assert_called_once_with("Cron: done")
        cron.request_heartbeat_now.assert_called_once_with()

        state = cron.jobs[job.id].state
        assert state.last_status == "ok"
        assert state.last_summary == "done"
        cron.stop()

    @pytest.mark.asyncio
    async def test_posts_last_output_even_when_job_errors(self, store_path, log, wait_for):
        runner = AsyncMock(return_value={"status": "error", "summary": "last output", "error": "boom"})
        cron = make_service(store_path, log, run_isolated_agent_job=runner)
        await cron.start()
        job = await cron.add(isolated_job(now_ms() + 20))

        await wait_for(lambda: runner.await_count == 1)
        await cron.timers.drain()

        cron.enqueue_system_event.assert_called_once_with("Cron (error): last output")
        cron.request_heartbeat_now.assert_called_once_with()
        state = cron.jobs[job.id].state
        assert state.last_status == "error"
        assert state.last_error == "boom"
        assert state.next_run_at_ms is None
        assert not cron.timers.is_armed(job.id)
        cron.stop()

    @pytest.mark.asyncio
    async def test_no_summary_posts_nothing(self, store_path, log, wait_for):
        runner = AsyncMock(return_value={"status": "ok"})
        cron = make_service(store_path, log, run_isolated_agent_job=runner)
        await cron.start()
        await cron.add(isolated_job(now_ms() + 20))

        await wait_for(lambda: runner.await_count == 1)
        await cron.timers.drain()

        cron.enqueue_system_event.assert_not_called()
        cron.request_heartbeat_now.assert_not_called()
        cron.stop()

    @pytest.mark.asyncio
    async def test_runner_exception_is_recorded_and_scheduler_keeps_going(self, store_path, log, wait_for):
        runner = AsyncMock(side_effect=RuntimeError("kaput"))
        cron = make_service(store_path, log, run_isolated_agent_job=runner)
        await cron.start()
        failing = await cron.add(isolated_job(now_ms() + 20))

        await wait_for(lambda: cron.jobs[failing.id].state.last_status is not None)
        await cron.timers.drain()
        assert cron.jobs[failing.id].state.last_status == "error"
        assert cron.jobs[failing.id].state.last_error == "kaput"
        log.error.assert_called()

        await cron.add(main_job(now_ms() + 20, text="still alive"))
        await wait_for(lambda: cron.enqueue_system_event.called)
        cron.enqueue_system_event.assert_called_once_with("still alive")
        await cron.timers.drain()
        cron.stop()

    @pytest.mark.asyncio
    async def test_does_not_overlap_runs_of_the_same_job(self, store_path, log, wait_for):
        release = asyncio.Event()

        async def slow_runner(payload):
            await release.wait()
            return {"status": "ok", "summary": "slow"}

        runner = AsyncMock(side_effect=slow_runner)
        cron = make_service(store_path, log, run_isolated_agent_job=runner)
        await cron.start()
        job = await cron.add({
            "schedule": {"kind": "every", "everyMs": 20},
            "sessionTarget": "isolated",
            "payload": {"kind": "agentTurn", "message": "tick"},
        })

        await wait_for(lambda: runner.await_count == 1)
        await asyncio.sleep(0.1)
        assert runner.await_count == 1
        assert not cron.timers.is_armed(job.id)
        assert cron.jobs[job.id].state.running_at_ms is not None

        # in-flight run still finishes and records state after stop
        cron.stop()
        release.set()
        await cron.timers.drain()

        assert runner.await_count == 1
        state = cron.jobs[job.id].state
        assert state.last_status == "ok"
        assert state.running_at_ms is None
        assert not cron.timers.armed()


class TestValidation:

    @pytest.mark.asyncio
    async def test_rejects_unsupported_session_payload_combinations(self, store_path, log):
        cron = make_service(store_path, log)

        with pytest.raises(CronValidationError, match="main cron jobs require"):
            await cron.add({
                "enabled": True,
                "schedule": {"kind": "every", "everyMs": 1000},
                "sessionTarget": "main",
                "wakeMode": "next-heartbeat",
                "payload": {"kind": "agentTurn", "message": "nope"},
            })

        with pytest.raises(CronValidationError, match="isolated cron jobs require"):
            await cron.add({
                "enabled": True,
                "schedule": {"kind": "every", "everyMs": 1000},
                "sessionTarget": "isolated",
                "wakeMode": "next-heartbeat",
                "payload": {"kind": "systemEvent", "text": "nope"},
            })

        assert not store_path.exists()
        assert cron.jobs == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "schedule",
        [
            {"kind": "every", "everyMs": 0},
            {"kind": "every", "everyMs": -5},
            {"kind": "weekly"},
            {"kind": "at"},
        ],
    )
    async def test_rejects_malformed_schedules(self, store_path, log, schedule):
        cron = make_service(store_path, log)
        with pytest.raises(CronValidationError):
            await cron.add({
                "schedule": schedule,
                "sessionTarget": "main",
                "payload": {"kind": "systemEvent", "text": "hi"},
            })
        assert not store_path.exists()

    @pytest.mark.asyncio
    async def test_skips_invalid_main_jobs_loaded_from_disk(self, store_path, log, wait_for):
        created = now_ms()
        store_path.parent.mkdir(parents=True)
        store_path.write_text(json.dumps({
            "version": 1,
            "jobs": [
                {
                    "id": "job-1",
                    "enabled": True,
                    "createdAtMs": created,
                    "updatedAtMs": created,
                    "schedule": {"kind": "at", "atMs": created + 30},
                    "sessionTarget": "main",
                    "wakeMode": "now",
                    "payload": {"kind": "agentTurn", "message": "bad"},
                    "state": {},
                },
            ],
        }))

        cron = make_service(store_path, log)
        await cron.start()

        # kept, not dropped, so it can be inspected
        listed = await cron.list(include_disabled=True)
        assert [j.id for j in listed] == ["job-1"]

        await wait_for(lambda: cron.jobs["job-1"].state.last_status is not None)
        await cron.timers.drain()

        cron.enqueue_system_event.assert_not_called()
        cron.request_heartbeat_now.assert_not_called()
        cron.run_isolated_agent_job.assert_not_called()

        jobs = await cron.list(include_disabled=True)
        assert jobs[0].state.last_status == "skipped"
        assert "main job requires" in jobs[0].state.last_error
        cron.stop()


class TestSchedulerState:

    @pytest.mark.asyncio
    async def test_does_not_schedule_timers_when_disabled(self, store_path, log):
        cron = make_service(store_path, log, cron_enabled=False)
        await cron.start()
        await cron.add(main_job(now_ms() + 20))

        status = await cron.status()
        assert status["enabled"] is False
        assert status["jobs"] == 1
        assert status["nextWakeAtMs"] is None

        await asyncio.sleep(0.1)
        cron.enqueue_system_event.assert_not_called()
        cron.request_heartbeat_now.assert_not_called()
        assert cron.timers.armed() == []
        log.warning.assert_called()

        # still recorded for inspection
        assert len(await cron.list(include_disabled=True)) == 1
        cron.stop()

    @pytest.mark.asyncio
    async def test_status_reports_next_wake_when_enabled(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        at_ms = now_ms() + 60_000
        await cron.add(main_job(at_ms, wake_mode="next-heartbeat"))
        await cron.add({**main_job(at_ms - 1000), "enabled": False})

        status = await cron.status()
        assert status["enabled"] is True
        assert status["jobs"] == 2
        assert status["nextWakeAtMs"] == at_ms
        cron.stop()

    @pytest.mark.asyncio
    async def test_list_is_empty_until_loaded_and_side_effect_free(self, store_path, log):
        cron = make_service(store_path, log)
        assert await cron.list(include_disabled=True) == []

        await cron.start()
        await cron.add(main_job(now_ms() + 60_000))
        before = store_path.read_text()

        first = await cron.list(include_disabled=True)
        second = await cron.list(include_disabled=True)
        first[0].name = "mutated by caller"

        assert [j.id for j in first] == [j.id for j in second]
        assert cron.jobs[second[0].id].name is None
        assert store_path.read_text() == before
        cron.stop()

    @pytest.mark.asyncio
    async def test_badly_typed_store_fields_do_not_break_status_or_list(self, store_path, log):
        created = now_ms()
        main_payload = {"kind": "systemEvent", "text": "hi"}
        store_path.parent.mkdir(parents=True)
        store_path.write_text(json.dumps({
            "version": 1,
            "jobs": [
                {
                    "id": "valid",
                    "schedule": {"kind": "every", "everyMs": 60_000, "anchorMs": created},
                    "payload": main_payload,
                    "state": {},
                },
                {
                    "id": "bad-state",
                    "schedule": {"kind": "every", "everyMs": 60_000, "anchorMs": created},
                    "payload": main_payload,
                    "state": {"nextRunAtMs": "soon", "lastRunAtMs": [1], "lastError": 42},
                },
                {
                    "id": "bad-flags",
                    "enabled": "false",
                    "createdAtMs": "yesterday",
                    "updatedAtMs": None,
                    "schedule": {"kind": "at", "atMs": created + 60_000},
                    "payload": main_payload,
                },
                {
                    "id": "unknown-schedule",
                    "schedule": {"kind": "cron", "expr": "0 9 * * *"},
                    "payload": main_payload,
                },
            ],
        }))

        cron = make_service(store_path, log)
        await cron.start()

        status = await cron.status()
        assert status["jobs"] == 4
        assert status["nextWakeAtMs"] == created + 60_000

        jobs = {j.id: j for j in await cron.list(include_disabled=True)}
        assert set(jobs) == {"valid", "bad-state", "bad-flags", "unknown-schedule"}

        assert jobs["bad-state"].state.next_run_at_ms == created + 60_000
        assert jobs["bad-state"].state.last_error is None
        assert cron.timers.is_armed("bad-state")

        assert jobs["bad-flags"].enabled is False
        assert jobs["bad-flags"].created_at_ms == 0
        assert not cron.timers.is_armed("bad-flags")

        unknown = jobs["unknown-schedule"]
        assert unknown.state.last_status == "skipped"
        assert "schedule" in unknown.state.last_error
        assert not cron.timers.is_armed("unknown-schedule")

        # the skip reason survives a restart
        cron.stop()
        persisted = {j["id"]: j for j in json.loads(store_path.read_text())["jobs"]}
        assert persisted["unknown-schedule"]["state"]["lastStatus"] == "skipped"
        cron.enqueue_system_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_hides_disabled_jobs_by_default(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        enabled = await cron.add(main_job(now_ms() + 60_000))
        await cron.add({**main_job(now_ms() + 30_000), "enabled": False})

        assert [j.id for j in await cron.list()] == [enabled.id]
        assert len(await cron.list(include_disabled=True)) == 2
        cron.stop()

    @pytest.mark.asyncio
    async def test_jobs_persist_across_restarts(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add({
            "name": "Hourly check-in",
            "schedule": {"kind": "every", "everyMs": 3_600_000},
            "sessionTarget": "main",
            "payload": {"kind": "systemEvent", "text": "check in"},
        })
        cron.stop()

        data = json.loads(store_path.read_text())
        assert data["version"] == 1
        assert data["jobs"][0]["schedule"]["kind"] == "every"

        restarted = make_service(store_path, log)
        await restarted.start()
        jobs = await restarted.list()
        assert [j.id for j in jobs] == [job.id]
        assert jobs[0].name == "Hourly check-in"
        assert jobs[0].state.next_run_at_ms == job.state.next_run_at_ms
        assert restarted.timers.is_armed(job.id)
        restarted.stop()

    @pytest.mark.asyncio
    async def test_past_due_one_shot_fires_on_start(self, store_path, log, wait_for):
        past = now_ms() - 5_000
        store_path.parent.mkdir(parents=True)
        store_path.write_text(json.dumps({
            "version": 1,
            "jobs": [{
                "id": "late",
                "enabled": True,
                "schedule": {"kind": "at", "atMs": past},
                "sessionTarget": "main",
                "wakeMode": "now",
                "payload": {"kind": "systemEvent", "text": "better late"},
                "state": {},
            }],
        }))

        cron = make_service(store_path, log)
        await cron.start()
        await wait_for(lambda: cron.enqueue_system_event.called)
        await cron.timers.drain()

        cron.enqueue_system_event.assert_called_once_with("better late")
        assert cron.jobs["late"].enabled is False
        cron.stop()

    @pytest.mark.asyncio
    async def test_every_job_recurs_until_stopped(self, store_path, log, wait_for):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add({
            "schedule": {"kind": "every", "everyMs": 30},
            "sessionTarget": "main",
            "payload": {"kind": "systemEvent", "text": "tick"},
        })

        await wait_for(lambda: cron.enqueue_system_event.call_count >= 2)
        cron.stop()
        await cron.timers.drain()
        count = cron.enqueue_system_event.call_count

        state = cron.jobs[job.id].state
        assert cron.jobs[job.id].enabled is True
        assert state.last_status == "ok"
        assert state.next_run_at_ms > state.last_run_at_ms

        await asyncio.sleep(0.1)
        assert cron.enqueue_system_event.call_count == count

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, store_path, log):
        cron = make_service(store_path, log)
        cron.stop()
        await cron.start()
        cron.stop()
        cron.stop()
        assert cron.timers.armed() == []


class TestManagement:

    @pytest.mark.asyncio
    async def test_update_disables_and_reschedules(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000))
        assert cron.timers.is_armed(job.id)

        disabled = await cron.update(job.id, {"enabled": False})
        assert disabled.enabled is False
        assert disabled.state.next_run_at_ms is None
        assert not cron.timers.is_armed(job.id)

        new_at = now_ms() + 120_000
        enabled = await cron.update(job.id, {"enabled": True, "schedule": {"kind": "at", "atMs": new_at}})
        assert enabled.state.next_run_at_ms == new_at
        assert cron.timers.is_armed(job.id)
        assert cron.timers.armed() == [job.id]
        cron.stop()

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_pairing_without_changes(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000))

        with pytest.raises(CronValidationError, match="isolated cron jobs require"):
            await cron.update(job.id, {"sessionTarget": "isolated"})

        assert cron.jobs[job.id].session_target == "main"
        stored = json.loads(store_path.read_text())
        assert stored["jobs"][0]["sessionTarget"] == "main"
        cron.stop()

    @pytest.mark.asyncio
    async def test_update_and_run_unknown_job(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        with pytest.raises(CronJobNotFoundError):
            await cron.update("missing", {"enabled": False})
        with pytest.raises(CronJobNotFoundError):
            await cron.run("missing")
        cron.stop()

    @pytest.mark.asyncio
    async def test_remove_cancels_timer(self, store_path, log):
        cron = make_service(store_path, log)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000))

        assert await cron.remove(job.id) == {"ok": True, "removed": True}
        assert await cron.remove(job.id) == {"ok": True, "removed": False}
        assert not cron.timers.is_armed(job.id)
        assert await cron.list(include_disabled=True) == []
        cron.stop()

    @pytest.mark.asyncio
    async def test_run_force_and_due(self, store_path, log):
        cron = make_service(store_path, log, run_log_dir=store_path.parent / "runs")
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000))

        assert await cron.run(job.id, mode="due") == {"ok": True, "ran": False, "reason": "not-due"}
        cron.enqueue_system_event.assert_not_called()

        assert await cron.run(job.id) == {"ok": True, "ran": True}
        cron.enqueue_system_event.assert_called_once_with("hello")
        assert cron.jobs[job.id].enabled is False

        runs = await cron.runs(job.id)
        assert len(runs) == 1
        assert runs[0]["status"] == "ok"
        assert runs[0]["jobId"] == job.id
        cron.stop()

    @pytest.mark.asyncio
    async def test_wake_modes(self, store_path, log):
        cron = make_service(store_path, log)

        assert await cron.wake("  ") == {"ok": False}
        assert await cron.wake("ping", mode="next-heartbeat") == {"ok": True}
        cron.request_heartbeat_now.assert_not_called()

        assert await cron.wake("ping now") == {"ok": True}
        cron.enqueue_system_event.assert_has_calls([call("ping"), call("ping now")])
        cron.request_heartbeat_now.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_emits_lifecycle_events(self, store_path, log):
        events = []
        cron = make_service(store_path, log, on_event=events.append)
        await cron.start()
        job = await cron.add(main_job(now_ms() + 60_000))
        await cron.run(job.id)
        await cron.remove(job.id)

        assert [e["action"] for e in events] == ["added", "started", "finished", "removed"]
        finished = events[2]
        assert finished["status"] == "ok"
        assert finished["jobId"] == job.id
        cron.stop()

    @pytest.mark.asyncio
    async def test_add_surfaces_store_errors(self, tmp_path, log):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        cron = make_service(blocker / "jobs.json", log)

        with pytest.raises(CronStoreError):
            await cron.add(main_job(now_ms() + 60_000))
        log.error.assert_called()
