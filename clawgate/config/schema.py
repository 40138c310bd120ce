"""
Gateway configuration models.

Keys are camelCase on disk (matching the JSON config file) and snake_case
in Python; both spellings are accepted on input.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..routing.session_key import DEFAULT_ACCOUNT_ID, DEFAULT_AGENT_ID


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CronConfig(_ConfigModel):
    """Scheduler settings"""
    enabled: bool = True
    store: Optional[str] = Field(None, description="Path to jobs.json")
    max_concurrent_runs: int = Field(1, alias="maxConcurrentRuns", ge=1)


class AgentEntry(_ConfigModel):
    id: str
    name: Optional[str] = None


class AgentsConfig(_ConfigModel):
    default: str = DEFAULT_AGENT_ID
    entries: list[AgentEntry] = Field(default_factory=list, alias="list")


class BindingPeer(_ConfigModel):
    kind: Literal["dm", "group", "channel"]
    id: str


class BindingMatch(_ConfigModel):
    """Which inbound traffic a binding claims"""
    channel: str
    account_id: Optional[str] = Field(None, alias="accountId")
    peer: Optional[BindingPeer] = None
    guild_id: Optional[str] = Field(None, alias="guildId")
    team_id: Optional[str] = Field(None, alias="teamId")


class AgentBinding(_ConfigModel):
    agent_id: str = Field(..., alias="agentId")
    match: BindingMatch


class ChannelAccountConfig(_ConfigModel):
    token: Optional[str] = None
    enabled: bool = True


class ChannelConfig(_ConfigModel):
    """Per-channel settings; ``accounts`` keeps file order"""
    enabled: bool = True
    token: Optional[str] = None
    default_account: str = Field(DEFAULT_ACCOUNT_ID, alias="defaultAccount")
    accounts: dict[str, ChannelAccountConfig] = Field(default_factory=dict)


class GatewayConfig(_ConfigModel):
    """Root configuration document"""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    bindings: list[AgentBinding] = Field(default_factory=list)
    channels: dict[str, ChannelConfig] = Field(default_factory=dict)
    cron: CronConfig = Field(default_factory=CronConfig)


__all__ = [
    "CronConfig",
    "AgentEntry",
    "AgentsConfig",
    "BindingPeer",
    "BindingMatch",
    "AgentBinding",
    "ChannelAccountConfig",
    "ChannelConfig",
    "GatewayConfig",
]
