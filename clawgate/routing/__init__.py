"""Agent route resolution and session keys."""

from .resolve_route import ResolvedAgentRoute, RoutePeer, resolve_agent_route, resolve_route
from .session_key import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_AGENT_ID,
    DEFAULT_MAIN_KEY,
    build_agent_main_session_key,
    build_agent_peer_session_key,
    resolve_agent_id_from_session_key,
)

__all__ = [
    "RoutePeer",
    "ResolvedAgentRoute",
    "resolve_route",
    "resolve_agent_route",
    "DEFAULT_ACCOUNT_ID",
    "DEFAULT_AGENT_ID",
    "DEFAULT_MAIN_KEY",
    "build_agent_main_session_key",
    "build_agent_peer_session_key",
    "resolve_agent_id_from_session_key",
]
