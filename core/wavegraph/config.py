"""Shared wavegraph configuration utilities.

Centralises reading of ~/.wavegraph/configuration.json so that the executor
and the logging setup share one implementation.

Example file:
    {
        "executor": {"max_steps": 200, "failure_policy": "quarantine"},
        "logging": {"level": "DEBUG", "format": "human"}
    }
"""

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_MAX_STEPS = 100
DEFAULT_FAILURE_POLICY = "fail_fast"
DEFAULT_MAX_CONCURRENCY = 4

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

WAVEGRAPH_CONFIG_FILE = Path.home() / ".wavegraph" / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration path, honouring the WAVEGRAPH_CONFIG override."""
    override = os.environ.get("WAVEGRAPH_CONFIG")
    if override:
        return Path(override)
    return WAVEGRAPH_CONFIG_FILE


def get_wavegraph_config() -> dict[str, Any]:
    """Load wavegraph configuration from disk ({} if missing or unreadable)."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _executor_section() -> dict[str, Any]:
    section = get_wavegraph_config().get("executor", {})
    return section if isinstance(section, dict) else {}


def get_default_max_steps() -> int:
    """Return the configured step cap, falling back to DEFAULT_MAX_STEPS."""
    value = _executor_section().get("max_steps", DEFAULT_MAX_STEPS)
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_STEPS


def get_default_failure_policy() -> str:
    """Return the configured failure policy name ("fail_fast" or "quarantine")."""
    value = str(_executor_section().get("failure_policy", DEFAULT_FAILURE_POLICY)).lower()
    if value in ("fail_fast", "quarantine"):
        return value
    return DEFAULT_FAILURE_POLICY


def get_default_max_concurrency() -> int:
    """Return the configured parallel batch width."""
    value = _executor_section().get("max_concurrency", DEFAULT_MAX_CONCURRENCY)
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_CONCURRENCY


def get_logging_settings() -> tuple[str, str]:
    """Return (level, format) for configure_logging()."""
    section = get_wavegraph_config().get("logging", {})
    if not isinstance(section, dict):
        section = {}
    return str(section.get("level", "INFO")), str(section.get("format", "auto"))
