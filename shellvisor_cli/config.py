"""
Configuration management for Shellvisor.

Config files are stored in ~/.shellvisor/ (or $SHELLVISOR_HOME):
- ~/.shellvisor/config.yaml  - All settings (bash tool limits, elevation policy, display)
- ~/.shellvisor/.env         - Secrets (SUDO_PASSWORD) and SHELLVISOR_* overrides

This module provides:
- shellvisor config          - Show current configuration
- shellvisor config set      - Set a specific value
- shellvisor config path     - Print the config file location
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values, load_dotenv, set_key

from tools.bash_tool import BashToolConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Config paths
# =============================================================================

def get_shellvisor_home() -> Path:
    """Get the Shellvisor home directory (~/.shellvisor)."""
    return Path(os.getenv("SHELLVISOR_HOME", Path.home() / ".shellvisor"))

def get_config_path() -> Path:
    """Get the main config file path."""
    return get_shellvisor_home() / "config.yaml"

def get_env_path() -> Path:
    """Get the .env file path (for secrets)."""
    return get_shellvisor_home() / ".env"

def ensure_shellvisor_home():
    """Ensure ~/.shellvisor directory structure exists."""
    home = get_shellvisor_home()
    (home / "logs").mkdir(parents=True, exist_ok=True)


# =============================================================================
# Config loading/saving
# =============================================================================

DEFAULT_CONFIG = {
    "bash": {
        "timeout_sec": 1800,          # hard lifetime bound per command
        "background_ms": 10000,       # yield window before handing off
        "max_output_chars": 30000,    # cap on inline (synchronous) output
        "shell": "",                  # empty = bash, falling back to /bin/sh
        "cwd": "",                    # empty = current directory
        "scope_key": "default",
        "elevated": {
            "enabled": False,
            "allowed": False,
            "default_level": "off",
        },
    },

    "display": {
        "history_file": "",           # empty = <home>/history
        "log_tail_lines": 200,
    },

    "logging": {
        "level": "INFO",
    },

    # Config schema version - bump this when adding new required fields
    "_config_version": 1,
}

# SHELLVISOR_* environment variables that override config.yaml
ENV_OVERRIDES = {
    "SHELLVISOR_BASH_TIMEOUT": ("bash", "timeout_sec", float),
    "SHELLVISOR_BASH_YIELD_MS": ("bash", "background_ms", int),
    "SHELLVISOR_BASH_MAX_OUTPUT_CHARS": ("bash", "max_output_chars", int),
    "SHELLVISOR_SCOPE": ("bash", "scope_key", str),
}

# Keys stored in .env rather than config.yaml
SECRET_KEYS = ("SUDO_PASSWORD",)


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, preserving nested defaults.

    Keys in *override* take precedence. If both values are dicts the merge
    recurses, so a user who overrides only ``bash.elevated.allowed`` keeps
    the default ``bash.elevated.default_level`` intact.
    """
    result = base.copy()
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _set_nested(config: dict, dotted_key: str, value):
    """Set a value at a dotted key path, creating intermediate dicts."""
    parts = dotted_key.split(".")
    current = config
    for part in parts[:-1]:
        if part not in current or not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def load_config() -> Dict[str, Any]:
    """Load configuration from config.yaml merged over DEFAULT_CONFIG."""
    config_path = get_config_path()
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
            if not isinstance(user_config, dict):
                raise ValueError("top level must be a mapping")
            config = _deep_merge(config, user_config)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("Failed to load config %s: %s", config_path, e)

    return config


def save_config(config: Dict[str, Any]):
    """Save configuration to config.yaml."""
    ensure_shellvisor_home()
    with open(get_config_path(), "w", encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def load_env() -> Dict[str, str]:
    """Load ~/.shellvisor/.env into os.environ (existing vars win) and return its values."""
    env_path = get_env_path()
    if not env_path.exists():
        return {}
    load_dotenv(dotenv_path=env_path, override=False)
    return {k: v for k, v in dotenv_values(env_path).items() if v is not None}


def save_env_value(key: str, value: str):
    """Save or update a value in ~/.shellvisor/.env."""
    ensure_shellvisor_home()
    env_path = get_env_path()
    env_path.touch(exist_ok=True)
    set_key(str(env_path), key, value)


def get_env_value(key: str) -> Optional[str]:
    """Get a value from the environment, falling back to ~/.shellvisor/.env."""
    if key in os.environ:
        return os.environ[key]
    return load_env().get(key)


def _coerce(value: str) -> Any:
    """Convert a CLI string to bool/int/float where it clearly is one."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)
    return value


def set_config_value(key: str, value: str) -> Path:
    """Set one value. Secrets go to .env, everything else to config.yaml. Returns the file written."""
    if key.upper() in SECRET_KEYS:
        save_env_value(key.upper(), value)
        return get_env_path()

    # Only the user's own keys are written back, not the merged defaults
    config_path = get_config_path()
    user_config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable config %s: %s", config_path, e)
            user_config = {}

    _set_nested(user_config, key, _coerce(value))
    save_config(user_config)
    return config_path


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay SHELLVISOR_* environment variables onto a loaded config."""
    config = copy.deepcopy(config)
    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if not raw:
            continue
        try:
            config.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r (expected %s)", env_name, raw, cast.__name__)
    return config


def bash_tool_config_from(config: Optional[Dict[str, Any]] = None, **overrides) -> BashToolConfig:
    """Build the bash tool configuration bundle from a loaded config."""
    if config is None:
        config = load_config()
    bash = apply_env_overrides(config).get("bash", {})
    values = {
        "timeout_sec": bash.get("timeout_sec"),
        "background_ms": bash.get("background_ms"),
        "max_output_chars": bash.get("max_output_chars"),
        "shell": bash.get("shell") or "",
        "cwd": bash.get("cwd") or "",
        "scope_key": bash.get("scope_key"),
        "elevated": bash.get("elevated"),
    }
    values.update(overrides)
    return BashToolConfig(**{k: v for k, v in values.items() if v is not None})


# =============================================================================
# `shellvisor config` subcommands
# =============================================================================

def show_config(console=None):
    """Print the effective configuration (file + env overrides)."""
    from rich.console import Console
    from rich.table import Table

    console = console or Console()
    config = apply_env_overrides(load_config())

    console.print(f"[bold]Config:[/] {get_config_path()}")
    console.print(f"[bold]Secrets:[/] {get_env_path()}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Key")
    table.add_column("Value")

    def _rows(prefix: str, value: Any):
        if isinstance(value, dict):
            for k, v in value.items():
                yield from _rows(f"{prefix}.{k}" if prefix else k, v)
        else:
            yield prefix, value

    for key, value in _rows("", config):
        if key.startswith("_"):
            continue
        table.add_row(key, repr(value) if value == "" else str(value))
    for key in SECRET_KEYS:
        table.add_row(key, "(set)" if get_env_value(key) else "(not set)")
    console.print(table)


def config_command(args):
    """Handle config subcommands."""
    subcmd = getattr(args, "config_command", None)

    if subcmd is None or subcmd == "show":
        show_config()
    elif subcmd == "set":
        written = set_config_value(args.key, args.value)
        print(f"Set {args.key} in {written}")
    elif subcmd == "path":
        print(get_config_path())
    elif subcmd == "env-path":
        print(get_env_path())
