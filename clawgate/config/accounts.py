"""Channel account helpers (multi-account channels)."""
from __future__ import annotations

from ..routing.session_key import DEFAULT_ACCOUNT_ID, normalize_account_id, normalize_channel
from .schema import ChannelConfig, GatewayConfig


def _channel_config(config: GatewayConfig | None, channel: str) -> ChannelConfig | None:
    if config is None:
        return None
    key = normalize_channel(channel)
    for name, channel_config in config.channels.items():
        if normalize_channel(name) == key:
            return channel_config
    return None


def list_channel_account_ids(config: GatewayConfig | None, channel: str) -> list[str]:
    """
    List account ids configured for a channel.

    Accounts come back in file order, disabled ones included. A top-level
    channel token implies the default account.
    """
    channel_config = _channel_config(config, channel)
    if channel_config is None:
        return []

    ids: list[str] = []
    if channel_config.token and channel_config.token.strip():
        ids.append(normalize_account_id(channel_config.default_account))
    for account_id in channel_config.accounts:
        normalized = normalize_account_id(account_id)
        if normalized not in ids:
            ids.append(normalized)
    return ids


def resolve_default_account_id(config: GatewayConfig | None, channel: str) -> str:
    """Account whose session keys carry no account suffix."""
    channel_config = _channel_config(config, channel)
    if channel_config is None:
        return DEFAULT_ACCOUNT_ID
    return normalize_account_id(channel_config.default_account)


def resolve_account_token(
    config: GatewayConfig | None,
    channel: str,
    account_id: str | None,
) -> str:
    """
    Resolve the bot token for one account.

    Named accounts only use their own token; the default account falls back
    to the channel's top-level token. Unknown accounts resolve to "".
    """
    channel_config = _channel_config(config, channel)
    if channel_config is None:
        return ""

    account = normalize_account_id(account_id)
    for name, account_config in channel_config.accounts.items():
        if normalize_account_id(name) == account:
            return (account_config.token or "").strip()

    if account == normalize_account_id(channel_config.default_account):
        return (channel_config.token or "").strip()
    return ""
