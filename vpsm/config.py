"""User configuration: YAML file in the per-user config directory.

Resolution order for the directory: ``$VPSM_CONFIG_DIR``, then
``$XDG_CONFIG_HOME/vpsm``, then ``~/.config/vpsm``. The config file itself can
be pointed elsewhere with ``$VPSM_CONFIG`` or ``--config``.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from vpsm.retry import RetryConfig

logger = logging.getLogger(__name__)

APP_NAME = "vpsm"
CONFIG_FILE = "config.yaml"
DB_FILE = "vpsm.db"


@dataclass
class PollSettings:
    """Poll loop tuning for the orchestrator (interval in seconds)."""

    interval: float = 3.0
    max_attempts: int = 100
    max_transient_errors: int = 3


@dataclass
class TrackerSettings:
    """Concurrent tracker tuning (seconds)."""

    dismiss_delay: float = 5.0
    stale_after: float = 300.0


@dataclass
class Settings:
    default_provider: str = ""
    db_path: str = ""
    retention_hours: float = 24.0
    polling: PollSettings = field(default_factory=PollSettings)
    tracker: TrackerSettings = field(default_factory=TrackerSettings)
    retry: RetryConfig = field(default_factory=RetryConfig)


def _expand_path(path: str) -> str:
    """Expand user home directory and environment variables in path."""
    return os.path.expanduser(os.path.expandvars(path))


def config_dir() -> Path:
    """Directory holding the config file and the action database."""
    override = os.environ.get("VPSM_CONFIG_DIR")
    if override:
        return Path(_expand_path(override))
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(_expand_path(xdg)) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def default_config_path() -> Path:
    override = os.environ.get("VPSM_CONFIG")
    if override:
        return Path(_expand_path(override))
    return config_dir() / CONFIG_FILE


def default_db_path() -> Path:
    return config_dir() / DB_FILE


def load_config(config_path: str | None = None) -> dict:
    """Load the raw configuration mapping from YAML.

    A missing file yields an empty mapping; an unreadable or malformed file
    is fatal.
    """
    path = Path(config_path) if config_path else default_config_path()
    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML config {path}: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Error reading config {path}: {e}")
        sys.exit(1)

    if config is None:
        return {}
    if not isinstance(config, dict):
        logger.error(f"Error: config {path} must be a mapping, got {type(config).__name__}.")
        sys.exit(1)
    return config


def _section(config: dict, name: str) -> dict:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        logger.error(f"Error: '{name}' section in config must be a mapping.")
        sys.exit(1)
    return value


def _number(section: dict, section_name: str, key: str, default, kind=float, minimum=0):
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.error(f"Error: '{section_name}.{key}' must be a number, got {value!r}.")
        sys.exit(1)
    if value < minimum:
        logger.error(f"Error: '{section_name}.{key}' must be >= {minimum}, got {value}.")
        sys.exit(1)
    return kind(value)


def load_settings(config_path: str | None = None) -> Settings:
    """Load and validate settings, filling defaults for missing keys."""
    config = load_config(config_path)
    defaults = Settings()

    actions = _section(config, "actions")
    polling = _section(config, "polling")
    tracker = _section(config, "tracker")
    retry = _section(config, "retry")

    db_path = actions.get("db_path") or ""
    if db_path:
        db_path = _expand_path(str(db_path))

    return Settings(
        default_provider=str(config.get("default_provider") or ""),
        db_path=db_path,
        retention_hours=_number(actions, "actions", "retention_hours", defaults.retention_hours),
        polling=PollSettings(
            interval=_number(polling, "polling", "interval", defaults.polling.interval),
            max_attempts=_number(polling, "polling", "max_attempts", defaults.polling.max_attempts, int, 1),
            max_transient_errors=_number(
                polling, "polling", "max_transient_errors", defaults.polling.max_transient_errors, int, 1
            ),
        ),
        tracker=TrackerSettings(
            dismiss_delay=_number(tracker, "tracker", "dismiss_delay", defaults.tracker.dismiss_delay),
            stale_after=_number(tracker, "tracker", "stale_after", defaults.tracker.stale_after),
        ),
        retry=RetryConfig(
            max_attempts=_number(retry, "retry", "max_attempts", defaults.retry.max_attempts, int, 1),
            base_delay=_number(retry, "retry", "base_delay", defaults.retry.base_delay),
            max_delay=_number(retry, "retry", "max_delay", defaults.retry.max_delay),
        ),
    )
