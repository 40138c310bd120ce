"""
Session key construction.

Session keys address one conversation. Peer-scoped keys look like

    agent:<agentId>:<channel>:<peerKind>:<peerId>[:thread:<threadId>][:<accountId>]

The account suffix is left off for a channel's default account so keys
written before multi-account support keep resolving to the same session.
"""
from __future__ import annotations

import re

DEFAULT_AGENT_ID = "main"
DEFAULT_ACCOUNT_ID = "default"
DEFAULT_MAIN_KEY = "main"

_INVALID_AGENT_CHARS = re.compile(r"[^a-z0-9_-]+")


def normalize_agent_id(value: str | None) -> str:
    """Normalize agent id to a lowercase slug ("main" when empty)"""
    trimmed = (value or "").strip().lower()
    if not trimmed:
        return DEFAULT_AGENT_ID
    slug = _INVALID_AGENT_CHARS.sub("-", trimmed).strip("-")
    return slug or DEFAULT_AGENT_ID


def normalize_account_id(value: str | None) -> str:
    """Normalize account id ("default" when empty)"""
    trimmed = (value or "").strip().lower()
    return trimmed or DEFAULT_ACCOUNT_ID


def normalize_channel(value: str | None) -> str:
    return (value or "").strip().lower()


def build_agent_main_session_key(
    agent_id: str | None,
    main_key: str = DEFAULT_MAIN_KEY,
) -> str:
    """Key of the agent's primary context (e.g. ``agent:main:main``)."""
    key = (main_key or "").strip().lower() or DEFAULT_MAIN_KEY
    return f"agent:{normalize_agent_id(agent_id)}:{key}"


def build_agent_peer_session_key(
    agent_id: str | None,
    channel: str,
    peer_kind: str,
    peer_id: str,
    account_id: str | None = None,
    default_account_id: str = DEFAULT_ACCOUNT_ID,
    thread_id: str | int | None = None,
) -> str:
    """
    Build the session key for one peer on one channel account.

    Args:
        agent_id: Owning agent
        channel: Channel name (telegram, discord, ...)
        peer_kind: dm, group or channel
        peer_id: Channel-specific peer id (case preserved)
        account_id: Bot account on the channel
        default_account_id: Account whose keys carry no suffix
        thread_id: Optional sub-thread (forum topic, reply thread)

    Returns:
        Session key string
    """
    parts = [
        "agent",
        normalize_agent_id(agent_id),
        normalize_channel(channel) or "unknown",
        (peer_kind or "dm").strip().lower(),
        (peer_id or "").strip() or "unknown",
    ]
    thread = str(thread_id).strip() if thread_id is not None else ""
    if thread:
        parts.extend(["thread", thread])

    account = normalize_account_id(account_id)
    if account != normalize_account_id(default_account_id):
        parts.append(account)
    return ":".join(parts)


def resolve_agent_id_from_session_key(session_key: str | None) -> str:
    """Extract the agent id from an ``agent:<id>:...`` key."""
    raw = (session_key or "").strip()
    parts = raw.split(":")
    if len(parts) >= 3 and parts[0].lower() == "agent":
        return normalize_agent_id(parts[1])
    return DEFAULT_AGENT_ID


__all__ = [
    "DEFAULT_AGENT_ID",
    "DEFAULT_ACCOUNT_ID",
    "DEFAULT_MAIN_KEY",
    "normalize_agent_id",
    "normalize_account_id",
    "normalize_channel",
    "build_agent_main_session_key",
    "build_agent_peer_session_key",
    "resolve_agent_id_from_session_key",
]
