from __future__ import annotations

from enum import Enum
from typing import Any


class CronErrorCode(str, Enum):
    INVALID_JOB = "INVALID_JOB"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    STORE_FAILED = "STORE_FAILED"


class CronError(Exception):
    def __init__(self, message: str, error_code: CronErrorCode, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code.value,
            "message": str(self),
            "details": self.details,
        }


class CronValidationError(CronError, ValueError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, CronErrorCode.INVALID_JOB, details)


class CronJobNotFoundError(CronError, LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", CronErrorCode.JOB_NOT_FOUND, {"jobId": job_id})
        self.job_id = job_id


class CronStoreError(CronError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, CronErrorCode.STORE_FAILED, details)
