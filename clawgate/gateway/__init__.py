"""Gateway wiring around the cron core: system events and heartbeats."""

from .cron_bootstrap import GatewayCronState, build_gateway_cron_service
from .heartbeat import HeartbeatWake
from .system_events import SystemEvent, SystemEventQueue

__all__ = [
    "GatewayCronState",
    "build_gateway_cron_service",
    "HeartbeatWake",
    "SystemEvent",
    "SystemEventQueue",
]
