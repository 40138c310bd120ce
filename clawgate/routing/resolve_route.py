"""
Agent route resolution with binding matching.

``resolve_route`` is the pure core: (agent, channel, account, peer) in,
session keys out. ``resolve_agent_route`` first picks the agent through the
configured bindings and then defers to it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Mapping

from .session_key import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_MAIN_KEY,
    build_agent_main_session_key,
    build_agent_peer_session_key,
    normalize_account_id,
    normalize_agent_id,
    normalize_channel,
)

if TYPE_CHECKING:
    from ..config.schema import AgentBinding, GatewayConfig

PeerKind = Literal["dm", "group", "channel"]

MatchedBy = Literal[
    "binding.peer",
    "binding.peer.parent",
    "binding.guild",
    "binding.team",
    "binding.account",
    "binding.channel",
    "default",
    "explicit",
]


@dataclass(frozen=True)
class RoutePeer:
    """Peer information for routing"""
    kind: PeerKind
    id: str


@dataclass(frozen=True)
class ResolvedAgentRoute:
    """Resolved agent route"""
    agent_id: str
    channel: str
    account_id: str
    peer: RoutePeer
    session_key: str
    main_session_key: str
    matched_by: MatchedBy = "explicit"


def normalize_id(value: str | int | None) -> str:
    """Normalize ID (preserve case)"""
    return str(value).strip() if value is not None else ""


def _coerce_peer(peer: RoutePeer | Mapping[str, str] | None) -> RoutePeer | None:
    if peer is None:
        return None
    if isinstance(peer, RoutePeer):
        return RoutePeer(kind=peer.kind, id=normalize_id(peer.id))
    kind = (peer.get("kind") or "dm").strip().lower()
    if kind not in ("dm", "group", "channel"):
        kind = "dm"
    return RoutePeer(kind=kind, id=normalize_id(peer.get("id")))


def resolve_route(
    agent_id: str | None,
    channel: str,
    account_id: str | None,
    peer: RoutePeer | Mapping[str, str],
    *,
    thread_id: str | int | None = None,
    default_account_id: str = DEFAULT_ACCOUNT_ID,
    matched_by: MatchedBy = "explicit",
) -> ResolvedAgentRoute:
    """
    Derive session keys for one inbound/outbound message.

    Pure and total: unknown agents, channels or accounts still produce a
    syntactically valid key.

    Args:
        agent_id: Agent owning the session
        channel: Channel name
        account_id: Bot account on the channel
        peer: Peer kind + id
        thread_id: Optional forum topic / reply thread
        default_account_id: Account whose keys carry no suffix

    Returns:
        ResolvedAgentRoute
    """
    route_peer = _coerce_peer(peer) or RoutePeer(kind="dm", id="")
    agent = normalize_agent_id(agent_id)
    channel_norm = normalize_channel(channel)
    account = normalize_account_id(account_id)

    session_key = build_agent_peer_session_key(
        agent_id=agent,
        channel=channel_norm,
        peer_kind=route_peer.kind,
        peer_id=route_peer.id,
        account_id=account,
        default_account_id=default_account_id,
        thread_id=thread_id,
    )
    main_session_key = build_agent_main_session_key(agent, DEFAULT_MAIN_KEY)

    return ResolvedAgentRoute(
        agent_id=agent,
        channel=channel_norm,
        account_id=account,
        peer=route_peer,
        session_key=session_key,
        main_session_key=main_session_key,
        matched_by=matched_by,
    )


# ---------------------------------------------------------------------------
# Binding matching
# ---------------------------------------------------------------------------

def matches_account_id(
    match: str | None,
    actual: str,
    default_account_id: str = DEFAULT_ACCOUNT_ID,
) -> bool:
    """Check if account ID matches (empty match means the channel's default account)"""
    trimmed = (match or "").strip()
    if not trimmed:
        return actual == normalize_account_id(default_account_id)
    if trimmed == "*":
        return True
    return normalize_account_id(trimmed) == actual


def matches_peer(binding: "AgentBinding", peer: RoutePeer) -> bool:
    peer_match = binding.match.peer
    if peer_match is None:
        return False
    peer_id = normalize_id(peer_match.id)
    if not peer_id:
        return False
    return peer_match.kind == peer.kind and peer_id == peer.id


def _is_scoped(binding: "AgentBinding") -> bool:
    match = binding.match
    return bool(match.peer or (match.guild_id or "").strip() or (match.team_id or "").strip())


def pick_agent_id(config: "GatewayConfig", agent_id: str | None) -> str:
    """Return the agent id if it is configured, else the default agent."""
    default_agent = normalize_agent_id(config.agents.default)
    trimmed = (agent_id or "").strip()
    if not trimmed:
        return default_agent

    normalized = normalize_agent_id(trimmed)
    if not config.agents.entries:
        return normalized
    for entry in config.agents.entries:
        if normalize_agent_id(entry.id) == normalized:
            return normalized
    return default_agent


def resolve_agent_route(
    config: "GatewayConfig",
    channel: str,
    account_id: str | None = None,
    peer: RoutePeer | Mapping[str, str] | None = None,
    *,
    parent_peer: RoutePeer | Mapping[str, str] | None = None,
    guild_id: str | None = None,
    team_id: str | None = None,
    thread_id: str | int | None = None,
) -> ResolvedAgentRoute:
    """
    Resolve agent and session key via binding hierarchy.

    Matching order:
    1. Peer binding (exact peer ID match)
    2. Parent peer binding (for threads)
    3. Guild binding (Discord)
    4. Team binding (Slack workspace)
    5. Account binding (specific channel account)
    6. Channel binding (accountId "*")
    7. Default agent
    """
    from ..config.accounts import resolve_default_account_id

    channel_norm = normalize_channel(channel)
    default_account = resolve_default_account_id(config, channel_norm)
    # no account on the message means the channel's default account
    account_norm = normalize_account_id(account_id) if (account_id or "").strip() else default_account
    route_peer = _coerce_peer(peer) or RoutePeer(kind="dm", id="")
    parent = _coerce_peer(parent_peer)
    guild = normalize_id(guild_id)
    team = normalize_id(team_id)

    bindings = [
        b
        for b in config.bindings
        if normalize_channel(b.match.channel) == channel_norm
        and matches_account_id(b.match.account_id, account_norm, default_account)
    ]

    def choose(agent_id: str, matched_by: MatchedBy) -> ResolvedAgentRoute:
        return resolve_route(
            pick_agent_id(config, agent_id),
            channel_norm,
            account_norm,
            route_peer,
            thread_id=thread_id,
            default_account_id=default_account,
            matched_by=matched_by,
        )

    if route_peer.id:
        for binding in bindings:
            if matches_peer(binding, route_peer):
                return choose(binding.agent_id, "binding.peer")

    if parent is not None and parent.id:
        for binding in bindings:
            if matches_peer(binding, parent):
                return choose(binding.agent_id, "binding.peer.parent")

    if guild:
        for binding in bindings:
            if normalize_id(binding.match.guild_id) == guild:
                return choose(binding.agent_id, "binding.guild")

    if team:
        for binding in bindings:
            if normalize_id(binding.match.team_id) == team:
                return choose(binding.agent_id, "binding.team")

    for binding in bindings:
        if (binding.match.account_id or "").strip() != "*" and not _is_scoped(binding):
            return choose(binding.agent_id, "binding.account")

    for binding in bindings:
        if (binding.match.account_id or "").strip() == "*" and not _is_scoped(binding):
            return choose(binding.agent_id, "binding.channel")

    return choose(config.agents.default, "default")


__all__ = [
    "RoutePeer",
    "ResolvedAgentRoute",
    "resolve_route",
    "resolve_agent_route",
    "pick_agent_id",
]
