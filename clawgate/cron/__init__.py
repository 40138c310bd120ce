"""Cron scheduling: persisted jobs that act on the agent's behalf."""

from .errors import CronError, CronJobNotFoundError, CronStoreError, CronValidationError
from .outcome import OutcomeReporter, format_isolated_summary
from .service import CronEvent, CronService
from .store import CronRunLog, CronStore
from .types import (
    AgentTurnPayload,
    AtSchedule,
    CronJob,
    CronJobCreate,
    CronJobState,
    EverySchedule,
    SystemEventPayload,
)

__all__ = [
    "CronService",
    "CronEvent",
    "CronStore",
    "CronRunLog",
    "OutcomeReporter",
    "format_isolated_summary",
    "CronJob",
    "CronJobCreate",
    "CronJobState",
    "AtSchedule",
    "EverySchedule",
    "SystemEventPayload",
    "AgentTurnPayload",
    "CronError",
    "CronValidationError",
    "CronJobNotFoundError",
    "CronStoreError",
]
