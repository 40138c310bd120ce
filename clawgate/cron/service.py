"""
Cron job scheduling service.

State mutations are serialized via one asyncio.Lock (the ``_lock`` below),
which also serializes store writes. Job execution itself runs outside the
lock so a slow isolated run never blocks list/status or other jobs.

Per job: Scheduled -> Firing -> Ran(ok|error) | Skipped. A successful at job
is then disabled; every jobs are rescheduled. A job is never re-armed while
its own run is in flight.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Optional, Union, cast

from .errors import CronJobNotFoundError, CronStoreError, CronValidationError
from .outcome import OutcomeReporter, maybe_await
from .schedule import compute_next_run, is_due, now_ms as _default_now_ms
from .store import CronRunLog, CronStore
from .timer import CronTimers
from .types import (
    AgentTurnPayload,
    AtSchedule,
    CronJob,
    CronJobCreate,
    CronPayload,
    EverySchedule,
    SystemEventPayload,
    payload_from_dict,
    schedule_from_dict,
    skip_reason,
    validate_job_spec,
    validate_schedule,
)

logger = logging.getLogger(__name__)

CronEventAction = Literal["added", "updated", "removed", "started", "finished"]

IsolatedJobRunner = Callable[[AgentTurnPayload], Awaitable[Dict[str, Any]]]


class CronEvent(dict):
    """Structured cron event delivered to ``on_event``."""
    pass


def _make_event(**kwargs: Any) -> CronEvent:
    return CronEvent({k: v for k, v in kwargs.items() if v is not None})


def _next_wake_at_ms(jobs: list[CronJob]) -> int | None:
    """Find earliest nextRunAtMs across enabled jobs."""
    earliest: int | None = None
    for j in jobs:
        if not j.enabled:
            continue
        nxt = j.state.next_run_at_ms
        if nxt is not None and (earliest is None or nxt < earliest):
            earliest = nxt
    return earliest


def _normalize_isolated_result(raw: Any) -> dict[str, Any]:
    """Coerce a runner result into {status, summary, error}."""
    if not isinstance(raw, Mapping):
        return {"status": "error", "summary": None, "error": "isolated job returned no result"}

    status = raw.get("status")
    if status not in ("ok", "error"):
        status = "ok" if raw.get("success") is True else "error"
    summary = raw.get("summary")
    error = raw.get("error")
    return {
        "status": status,
        "summary": summary if isinstance(summary, str) else None,
        "error": str(error) if error else None,
    }


class CronService:
    """
    Cron scheduling service.

    Features:
    - One-shot (at) and interval (every) schedules
    - main jobs: system event + heartbeat in the main session
    - isolated jobs: external agent runner, summary posted back to main
    - One timer per job, single-flight execution, global concurrency cap
    - JSON persistence after every mutation, optional JSONL run log
    """

    def __init__(
        self,
        store_path: Path | str,
        *,
        cron_enabled: bool = True,
        enqueue_system_event: Optional[Callable[[str], Any]] = None,
        request_heartbeat_now: Optional[Callable[[], Any]] = None,
        run_isolated_agent_job: Optional[IsolatedJobRunner] = None,
        log: Any = None,
        max_concurrent_runs: int = 1,
        run_log_dir: Optional[Path | str] = None,
        on_event: Optional[Callable[[CronEvent], None]] = None,
        now_ms: Optional[Callable[[], int]] = None,
    ):
        self.store_path = Path(store_path).expanduser()
        self.run_log_dir = Path(run_log_dir).expanduser() if run_log_dir else None
        self.log = log or logger

        self.enqueue_system_event = enqueue_system_event
        self.request_heartbeat_now = request_heartbeat_now
        self.run_isolated_agent_job = run_isolated_agent_job
        self.on_event = on_event

        # In-memory authoritative copy of the store
        self.jobs: Dict[str, CronJob] = {}
        self._store = CronStore(self.store_path)
        self._loaded = False

        self._cron_enabled = cron_enabled
        self._started = False
        self._stopped = False
        self._warned_disabled = False

        self._now_ms = now_ms or _default_now_ms
        self._lock = asyncio.Lock()
        self._run_slots = asyncio.Semaphore(max(1, max_concurrent_runs))
        self._executing: set[str] = set()
        self._timers = CronTimers(self._on_job_due, self._now_ms)
        self._reporter = OutcomeReporter(enqueue_system_event, request_heartbeat_now, self.log)

    @property
    def enabled(self) -> bool:
        return self._cron_enabled

    @property
    def timers(self) -> CronTimers:
        return self._timers

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------
    async def _ensure_loaded(self) -> None:
        """Load the store once; callers hold the lock."""
        if self._loaded:
            return
        jobs = await asyncio.to_thread(self._store.load)
        self.jobs = {j.id: j for j in jobs}
        self._loaded = True
        self.log.debug(f"cron: store loaded ({len(self.jobs)} jobs)")

    async def _persist(self, *, raise_errors: bool = True) -> None:
        """Write the whole document; callers hold the lock."""
        document = CronStore.build_document(list(self.jobs.values()))
        try:
            await asyncio.to_thread(self._store.write_document, document)
        except CronStoreError as e:
            self.log.error(f"cron: {e}")
            if raise_errors:
                raise

    # ------------------------------------------------------------------
    # Emit helper
    # ------------------------------------------------------------------
    def _emit(self, **kwargs: Any) -> None:
        if not self.on_event:
            return
        try:
            self.on_event(_make_event(**kwargs))
        except Exception as e:
            self.log.warning(f"cron: on_event handler failed: {e}")

    def _warn_if_disabled(self, action: str) -> None:
        if self._cron_enabled or self._warned_disabled:
            return
        self._warned_disabled = True
        self.log.warning(
            f"cron: scheduler disabled; jobs will not run automatically (action={action})"
        )

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------
    def _arm(self, job: CronJob) -> None:
        """(Re-)arm one job's timer, or cancel it if it should not fire."""
        if (
            not self._cron_enabled
            or not self._started
            or self._stopped
            or not job.enabled
            or job.id in self._executing
            or job.state.next_run_at_ms is None
        ):
            self._timers.cancel(job.id)
            return
        self._timers.arm(job.id, job.state.next_run_at_ms)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Load the store and arm one timer per enabled job."""
        async with self._lock:
            await self._ensure_loaded()
            if not self._cron_enabled:
                self._warn_if_disabled("start")
                return

            now = self._now_ms()
            for job in self.jobs.values():
                # a marker left by a crash mid-run
                job.state.running_at_ms = None
                if not job.enabled:
                    job.state.next_run_at_ms = None
                elif job.state.next_run_at_ms is None:
                    job.state.next_run_at_ms = compute_next_run(
                        job.schedule, now, last_run_at_ms=job.state.last_run_at_ms
                    )
                    reason = skip_reason(job)
                    if reason and job.state.next_run_at_ms is None:
                        # never fires, so record why now
                        job.state.last_status = "skipped"
                        job.state.last_error = reason
                        self.log.warning(f"cron: job {job.label} cannot run: {reason}")

            self._started = True
            self._stopped = False
            await self._persist(raise_errors=False)
            for job in self.jobs.values():
                self._arm(job)

            self.log.info(
                f"cron: started (jobs={len(self.jobs)}, "
                f"nextWakeAtMs={_next_wake_at_ms(list(self.jobs.values()))})"
            )

    def stop(self) -> None:
        """Cancel all timers. In-flight runs finish but nothing new starts."""
        self._stopped = True
        self._timers.cancel_all()
        self.log.info("cron: stopped")

    async def status(self) -> Dict[str, Any]:
        async with self._lock:
            nxt = _next_wake_at_ms(list(self.jobs.values())) if self._cron_enabled else None
            return {
                "enabled": self._cron_enabled,
                "storePath": str(self.store_path),
                "jobs": len(self.jobs),
                "nextWakeAtMs": nxt,
            }

    async def list(self, include_disabled: bool = False) -> list[CronJob]:
        """Snapshot of jobs sorted by next run ([] before the store is loaded)."""
        async with self._lock:
            if not self._loaded:
                return []
            jobs = [j for j in self.jobs.values() if include_disabled or j.enabled]
            jobs.sort(
                key=lambda j: (j.state.next_run_at_ms is None, j.state.next_run_at_ms or 0)
            )
            return [copy.deepcopy(j) for j in jobs]

    async def add(self, spec: Union[CronJobCreate, Mapping[str, Any]]) -> CronJob:
        """
        Validate, persist and schedule a new job.

        Raises:
            CronValidationError: payload/target mismatch or bad schedule
            CronStoreError: the store could not be written
        """
        if not isinstance(spec, CronJobCreate):
            spec = CronJobCreate.from_dict(spec)
        validate_job_spec(spec.session_target, spec.payload)
        validate_schedule(spec.schedule)

        async with self._lock:
            self._warn_if_disabled("add")
            await self._ensure_loaded()

            now = self._now_ms()
            schedule = copy.deepcopy(spec.schedule)
            if isinstance(schedule, EverySchedule) and schedule.anchor_ms is None:
                schedule.anchor_ms = now

            job = CronJob(
                id=str(uuid.uuid4()),
                name=spec.name,
                description=spec.description,
                enabled=spec.enabled,
                schedule=schedule,
                session_target=spec.session_target,
                wake_mode=spec.wake_mode,
                payload=copy.deepcopy(spec.payload),
                created_at_ms=now,
                updated_at_ms=now,
            )
            if job.enabled:
                job.state.next_run_at_ms = compute_next_run(schedule, now)

            self.jobs[job.id] = job
            await self._persist()
            self._arm(job)
            snapshot = copy.deepcopy(job)

        self._emit(jobId=job.id, action="added", nextRunAtMs=job.state.next_run_at_ms)
        self.log.info(f"cron: added job {job.label} (id={job.id})")
        return snapshot

    async def update(self, job_id: str, patch: Mapping[str, Any]) -> CronJob:
        """
        Patch an existing job. The patched job must still pass validation;
        otherwise nothing changes.
        """
        async with self._lock:
            self._warn_if_disabled("update")
            await self._ensure_loaded()

            job = self.jobs.get(job_id)
            if job is None:
                raise CronJobNotFoundError(job_id)

            candidate = copy.deepcopy(job)
            _apply_job_patch(candidate, patch)
            validate_job_spec(candidate.session_target, candidate.payload)
            validate_schedule(candidate.schedule)

            now = self._now_ms()
            if isinstance(candidate.schedule, EverySchedule) and candidate.schedule.anchor_ms is None:
                candidate.schedule.anchor_ms = now
            candidate.updated_at_ms = now
            if candidate.enabled:
                candidate.state.next_run_at_ms = compute_next_run(
                    candidate.schedule, now, last_run_at_ms=candidate.state.last_run_at_ms
                )
            else:
                candidate.state.next_run_at_ms = None

            self.jobs[job_id] = candidate
            await self._persist()
            self._arm(candidate)
            snapshot = copy.deepcopy(candidate)

        self._emit(jobId=job_id, action="updated", nextRunAtMs=snapshot.state.next_run_at_ms)
        self.log.info(f"cron: updated job {job_id}")
        return snapshot

    async def remove(self, job_id: str) -> Dict[str, Any]:
        async with self._lock:
            self._warn_if_disabled("remove")
            await self._ensure_loaded()

            removed = self.jobs.pop(job_id, None) is not None
            self._timers.cancel(job_id)
            if removed:
                await self._persist()

        if removed:
            self._emit(jobId=job_id, action="removed")
            self.log.info(f"cron: removed job {job_id}")
        return {"ok": True, "removed": removed}

    async def run(self, job_id: str, mode: Literal["due", "force"] = "force") -> Dict[str, Any]:
        """Run a job now (force) or only if it is due."""
        async with self._lock:
            self._warn_if_disabled("run")
            await self._ensure_loaded()

            job = self.jobs.get(job_id)
            if job is None:
                raise CronJobNotFoundError(job_id)
            if mode == "due" and not (job.enabled and is_due(job.state.next_run_at_ms, self._now_ms())):
                return {"ok": True, "ran": False, "reason": "not-due"}
            if job_id in self._executing:
                return {"ok": True, "ran": False, "reason": "already-running"}

        ran = await self._execute(job_id, forced=True)
        return {"ok": True, "ran": ran}

    async def wake(
        self,
        text: str,
        mode: Literal["now", "next-heartbeat"] = "now",
    ) -> Dict[str, Any]:
        """Post a system event to the main session directly."""
        text = (text or "").strip()
        if not text:
            return {"ok": False}
        ok = await self._reporter.post(text, heartbeat=mode == "now")
        return {"ok": ok}

    async def runs(self, job_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Recent run-log entries for a job (empty without a run-log dir)."""
        if self.run_log_dir is None:
            return []
        return await asyncio.to_thread(CronRunLog(self.run_log_dir, job_id).read, limit)

    def get_job(self, job_id: str) -> Optional[CronJob]:
        job = self.jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _on_job_due(self, job_id: str) -> None:
        await self._execute(job_id, forced=False)

    def _claim(self, job_id: str, forced: bool) -> Optional[CronJob]:
        """Reserve a job for execution; callers hold the lock."""
        if self._stopped:
            return None
        job = self.jobs.get(job_id)
        if job is None or job_id in self._executing:
            return None
        if not forced:
            if not self._started or not self._cron_enabled or not job.enabled:
                return None
            if not is_due(job.state.next_run_at_ms, self._now_ms()):
                self._arm(job)
                return None
        self._executing.add(job_id)
        self._timers.cancel(job_id)
        return copy.deepcopy(job)

    async def _execute(self, job_id: str, *, forced: bool) -> bool:
        async with self._lock:
            job = self._claim(job_id, forced)
        if job is None:
            return False

        try:
            async with self._run_slots:
                if self._stopped:
                    return False

                started_at = self._now_ms()
                async with self._lock:
                    live = self.jobs.get(job_id)
                    if live is not None:
                        live.state.running_at_ms = started_at
                self._emit(jobId=job_id, action="started", runAtMs=started_at)

                status, error, summary = await self._run_payload(job)
                await self._finish(job_id, started_at, status, error, summary)
            return True
        finally:
            self._executing.discard(job_id)

    async def _run_payload(self, job: CronJob) -> tuple[str, Optional[str], Optional[str]]:
        """Run one job's payload; returns (status, error, summary)."""
        reason = skip_reason(job)
        if reason:
            self.log.warning(f"cron: skipping job {job.label}: {reason}")
            return "skipped", reason, None

        if isinstance(job.payload, SystemEventPayload):
            text = job.payload.text
            if not await self._reporter.post(text):
                return "error", "failed to enqueue system event", None
            return "ok", None, text

        payload = cast(AgentTurnPayload, job.payload)
        if self.run_isolated_agent_job is None:
            return "error", "isolated agent runner not configured", None

        try:
            raw = await maybe_await(self.run_isolated_agent_job(payload))
        except Exception as e:
            self.log.error(f"cron: isolated job {job.label} failed: {e}", exc_info=True)
            return "error", str(e) or type(e).__name__, None

        result = _normalize_isolated_result(raw)
        await self._reporter.report_isolated(result)
        if result["status"] == "ok":
            return "ok", None, result["summary"]
        return "error", result["error"] or "cron job failed", result["summary"]

    async def _finish(
        self,
        job_id: str,
        started_at: int,
        status: str,
        error: Optional[str],
        summary: Optional[str],
    ) -> None:
        async with self._lock:
            self._executing.discard(job_id)
            job = self.jobs.get(job_id)
            if job is None:
                self.log.debug(f"cron: job {job_id} removed while running")
                return

            ended_at = self._now_ms()
            state = job.state
            state.running_at_ms = None
            state.last_run_at_ms = started_at
            state.last_status = status  # type: ignore[assignment]
            state.last_error = error
            state.last_summary = summary
            state.last_duration_ms = max(0, ended_at - started_at)

            if isinstance(job.schedule, AtSchedule):
                # one-shot: a successful run disables it; any other outcome
                # leaves the flag alone but the slot is spent either way
                if status == "ok":
                    job.enabled = False
                state.next_run_at_ms = None
            elif job.enabled:
                state.next_run_at_ms = compute_next_run(job.schedule, ended_at)
            else:
                state.next_run_at_ms = None
            job.updated_at_ms = ended_at

            await self._persist(raise_errors=False)
            self._arm(job)
            next_run = state.next_run_at_ms
            duration = state.last_duration_ms

        if status == "error":
            self.log.error(f"cron: job {job_id} finished with error: {error}")
        else:
            self.log.info(f"cron: job {job_id} finished ({status}) in {duration}ms")

        self._emit(
            jobId=job_id,
            action="finished",
            status=status,
            error=error,
            summary=summary,
            runAtMs=started_at,
            durationMs=duration,
            nextRunAtMs=next_run,
        )
        if self.run_log_dir is not None:
            entry = _make_event(
                ts=self._now_ms(),
                jobId=job_id,
                action="finished",
                status=status,
                error=error,
                summary=summary,
                runAtMs=started_at,
                durationMs=duration,
                nextRunAtMs=next_run,
            )
            await asyncio.to_thread(CronRunLog(self.run_log_dir, job_id).append, dict(entry))


# ---------------------------------------------------------------------------
# Patch helper
# ---------------------------------------------------------------------------

def _apply_job_patch(job: CronJob, patch: Mapping[str, Any]) -> None:
    """Apply an API-style patch (camelCase or snake_case keys) in place."""
    if "name" in patch:
        name = patch["name"]
        job.name = name.strip() if isinstance(name, str) and name.strip() else None
    if "description" in patch:
        desc = patch["description"]
        job.description = desc.strip() if isinstance(desc, str) and desc.strip() else None
    if "enabled" in patch:
        job.enabled = bool(patch["enabled"])
    if "sessionTarget" in patch or "session_target" in patch:
        job.session_target = str(patch.get("sessionTarget", patch.get("session_target")))
    if "wakeMode" in patch or "wake_mode" in patch:
        val = patch.get("wakeMode", patch.get("wake_mode"))
        if val not in ("now", "next-heartbeat"):
            raise CronValidationError(f"invalid wakeMode: {val!r}")
        job.wake_mode = val

    if "schedule" in patch:
        sched = patch["schedule"]
        schedule = sched if isinstance(sched, (AtSchedule, EverySchedule)) else schedule_from_dict(sched)
        if schedule is None:
            raise CronValidationError("invalid schedule: expected kind \"at\" with atMs or \"every\" with everyMs")
        job.schedule = copy.deepcopy(schedule)

    if "payload" in patch:
        raw = patch["payload"]
        payload: Optional[CronPayload]
        if isinstance(raw, (SystemEventPayload, AgentTurnPayload)):
            payload = copy.deepcopy(raw)
        else:
            payload = payload_from_dict(raw)
        if payload is None:
            raise CronValidationError("invalid payload: expected kind \"systemEvent\" or \"agentTurn\"")
        job.payload = payload
