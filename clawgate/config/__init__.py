"""Gateway configuration."""

from .accounts import list_channel_account_ids, resolve_account_token, resolve_default_account_id
from .loader import ConfigError, is_cron_enabled, load_config, resolve_cron_store_path, resolve_state_dir
from .schema import (
    AgentBinding,
    AgentEntry,
    AgentsConfig,
    BindingMatch,
    BindingPeer,
    ChannelAccountConfig,
    ChannelConfig,
    CronConfig,
    GatewayConfig,
)

__all__ = [
    "AgentBinding",
    "AgentEntry",
    "AgentsConfig",
    "BindingMatch",
    "BindingPeer",
    "ChannelAccountConfig",
    "ChannelConfig",
    "CronConfig",
    "GatewayConfig",
    "ConfigError",
    "load_config",
    "is_cron_enabled",
    "resolve_cron_store_path",
    "resolve_state_dir",
    "list_channel_account_ids",
    "resolve_account_token",
    "resolve_default_account_id",
]
