"""Cron service bootstrap for the gateway.

Key responsibilities:
1. Resolve store path and enabled flag from config
2. Create CronService with its callbacks wired to the main session:
   - enqueue_system_event -> SystemEventQueue (main session key)
   - request_heartbeat_now -> HeartbeatWake
   - run_isolated_agent_job -> caller-supplied runner
3. Return GatewayCronState (start is deferred to the caller)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..config import GatewayConfig, is_cron_enabled, resolve_cron_store_path
from ..cron import CronEvent, CronService
from ..cron.service import IsolatedJobRunner
from ..routing.session_key import build_agent_main_session_key
from .heartbeat import HeartbeatWake
from .system_events import SystemEventQueue

logger = logging.getLogger(__name__)


@dataclass
class GatewayCronState:
    cron: CronService
    store_path: Path
    enabled: bool
    main_session_key: str


def build_gateway_cron_service(
    config: Optional[GatewayConfig],
    *,
    run_isolated_agent_job: IsolatedJobRunner,
    events: SystemEventQueue,
    heartbeat: HeartbeatWake,
    on_event: Optional[Callable[[CronEvent], None]] = None,
    agent_id: Optional[str] = None,
) -> GatewayCronState:
    """
    Build the gateway's cron service.

    System events land in the default agent's main session; heartbeat
    requests are tagged with ``cron`` so the reply loop can tell them apart.
    """
    config = config or GatewayConfig()
    store_path = resolve_cron_store_path(config)
    enabled = is_cron_enabled(config)
    main_session_key = build_agent_main_session_key(agent_id or config.agents.default)

    logger.info(f"Cron store path: {store_path} (enabled={enabled})")

    def enqueue_system_event(text: str) -> None:
        if not events.enqueue(text, session_key=main_session_key):
            logger.debug(f"System event not queued for {main_session_key} (blank or duplicate)")

    def request_heartbeat_now() -> None:
        heartbeat.request_heartbeat_now(reason="cron")

    def handle_event(event: CronEvent) -> None:
        if event.get("action") == "finished" and event.get("status") == "error":
            logger.warning(f"Cron job {event.get('jobId')} failed: {event.get('error')}")
        if on_event is not None:
            on_event(event)

    service = CronService(
        store_path,
        cron_enabled=enabled,
        enqueue_system_event=enqueue_system_event,
        request_heartbeat_now=request_heartbeat_now,
        run_isolated_agent_job=run_isolated_agent_job,
        log=logging.getLogger("clawgate.cron"),
        max_concurrent_runs=config.cron.max_concurrent_runs,
        run_log_dir=store_path.parent / "runs",
        on_event=handle_event,
    )

    return GatewayCronState(
        cron=service,
        store_path=store_path,
        enabled=enabled,
        main_session_key=main_session_key,
    )
