"""Job store: a single JSON document rewritten atomically on every save.

Layout: {"version": 1, "jobs": [...]}

- Atomic writes (temp file in the same directory + os.replace)
- Backup of the previous document before overwrite
- Per-entry parsing: one bad entry never hides the others
- Run log (JSONL) per job
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any

from .errors import CronStoreError
from .types import CronJob

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class CronStore:
    """
    File-based persistent storage for cron jobs.

    ``load``/``save`` are synchronous; CronService serializes calls and runs
    writes off the event loop.
    """

    def __init__(self, store_path: Path | str):
        self.store_path = Path(store_path).expanduser()
        self.backup_path = self.store_path.with_name(self.store_path.name + ".bak")

    # ------------------------------------------------------------------
    # load / save
    # ------------------------------------------------------------------
    def load(self) -> list[CronJob]:
        """Load jobs from the store document ([] when missing or unreadable)."""
        if not self.store_path.exists():
            logger.info(f"Store file not found: {self.store_path}")
            return []

        try:
            with open(self.store_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing store file {self.store_path}: {e}")
            return []
        except OSError as e:
            logger.error(f"Error reading store file {self.store_path}: {e}")
            return []

        # v0 layout: bare list of jobs
        if isinstance(data, list):
            jobs_data = data
        elif isinstance(data, dict):
            jobs_data = data.get("jobs") or []
        else:
            logger.error(f"Unexpected store document type: {type(data).__name__}")
            return []

        jobs: list[CronJob] = []
        seen: set[str] = set()
        for index, raw in enumerate(jobs_data):
            if not isinstance(raw, dict):
                logger.error(f"Dropping cron job #{index}: not an object")
                continue
            try:
                job = CronJob.from_dict(raw)
            except (ValueError, TypeError) as e:
                logger.error(f"Dropping cron job #{index}: {e}")
                continue
            if job.id in seen:
                logger.warning(f"Duplicate cron job id {job.id}; keeping the first entry")
                continue
            if not isinstance(raw.get("enabled", True), bool):
                logger.warning(f"Cron job {job.id} has a non-boolean enabled flag; loading it disabled")
            seen.add(job.id)
            jobs.append(job)

        logger.info(f"Loaded {len(jobs)} jobs from {self.store_path}")
        return jobs

    def save(self, jobs: list[CronJob]) -> None:
        """Save jobs (atomic write with backup)."""
        self.write_document(self.build_document(jobs))

    @staticmethod
    def build_document(jobs: list[CronJob]) -> dict[str, Any]:
        return {"version": STORE_VERSION, "jobs": [job.to_dict() for job in jobs]}

    def write_document(self, data: dict[str, Any]) -> None:
        """
        Write a prepared document.

        Raises:
            CronStoreError: the write failed; the previous file is untouched
        """
        temp_path = self.store_path.with_name(f"{self.store_path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            if self.store_path.exists():
                shutil.copy2(self.store_path, self.backup_path)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, self.store_path)
            logger.debug(f"Saved {len(data.get('jobs', []))} jobs to {self.store_path}")
        except OSError as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning(f"Could not remove temp file {temp_path}")
            raise CronStoreError(
                f"Failed to write cron store {self.store_path}: {e}",
                {"path": str(self.store_path)},
            ) from e


# ---------------------------------------------------------------------------
# CronRunLog
# ---------------------------------------------------------------------------

class CronRunLog:
    """JSONL run log for cron job execution history."""

    def __init__(self, log_dir: Path, job_id: str, max_entries: int = 200):
        self.log_path = Path(log_dir) / f"{job_id}.jsonl"
        self.max_entries = max_entries

    def append(self, entry: dict[str, Any]) -> None:
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
            self._prune_if_needed()
        except OSError as e:
            logger.error(f"Error appending to run log {self.log_path}: {e}")

    def read(self, limit: int | None = None) -> list[dict[str, Any]]:
        if not self.log_path.exists():
            return []
        entries: list[dict[str, Any]] = []
        try:
            with open(self.log_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
        except OSError as e:
            logger.error(f"Error reading run log {self.log_path}: {e}")
            return []
        if limit:
            return entries[-limit:]
        return entries

    def _prune_if_needed(self) -> None:
        entries = self.read()
        if len(entries) <= self.max_entries:
            return
        entries = entries[-self.max_entries:]
        with open(self.log_path, "w", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry) + "\n")
