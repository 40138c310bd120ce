"""Configuration loader for clawgate.

Loads the gateway config from a JSON file:
- ${ENV_VAR} environment variable substitution
- pydantic validation into GatewayConfig
- state directory / cron store path resolution
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .schema import GatewayConfig

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "CLAWGATE_STATE_DIR"
SKIP_CRON_ENV = "CLAWGATE_SKIP_CRON"
DEFAULT_STATE_DIRNAME = ".clawgate"


class ConfigError(Exception):
    """Raised when the config file cannot be parsed or validated."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


# ---------------------------------------------------------------------------
# Env-var substitution
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively replace ${VAR} with os.environ values (unset vars are left as-is)."""
    if isinstance(obj, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), m.group(0))

        return _ENV_VAR_RE.sub(_replace, obj)
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(v) for v in obj]
    return obj


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(path: Path | str | None = None) -> GatewayConfig:
    """
    Load and validate the gateway configuration.

    Args:
        path: Config file path (defaults to <state dir>/config.json)

    Returns:
        Validated GatewayConfig (defaults when the file does not exist)

    Raises:
        ConfigError: File exists but is not valid JSON or fails validation
    """
    config_path = Path(path).expanduser() if path else resolve_state_dir() / "config.json"
    if not config_path.exists():
        logger.info(f"Config file not found, using defaults: {config_path}")
        return GatewayConfig()

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}", config_path) from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be an object: {config_path}", config_path)

    try:
        config = GatewayConfig.model_validate(_substitute_env_vars(raw))
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}", config_path) from e

    logger.debug(f"Loaded config from {config_path}")
    return config


# ---------------------------------------------------------------------------
# Paths / flags
# ---------------------------------------------------------------------------

def resolve_state_dir() -> Path:
    """State directory (CLAWGATE_STATE_DIR or ~/.clawgate)."""
    override = os.getenv(STATE_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_STATE_DIRNAME


def resolve_cron_store_path(config: GatewayConfig | None = None) -> Path:
    """Resolve cron store path from config (default <state>/cron/jobs.json)."""
    store = config.cron.store if config else None
    if store and store.strip():
        return Path(store.strip()).expanduser()
    return resolve_state_dir() / "cron" / "jobs.json"


def is_cron_enabled(config: GatewayConfig | None = None) -> bool:
    """Check if cron is enabled (CLAWGATE_SKIP_CRON=1 forces it off)."""
    if os.getenv(SKIP_CRON_ENV) == "1":
        return False
    if config is None:
        return True
    return config.cron.enabled


__all__ = [
    "ConfigError",
    "load_config",
    "resolve_state_dir",
    "resolve_cron_store_path",
    "is_cron_enabled",
]
