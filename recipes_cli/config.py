"""
Configuration management for the recipes CLI.

Config files live in ~/.recipes/ (override with RECIPES_HOME):
- ~/.recipes/config.yaml  - All settings (workspace, cron policy, scheduler)
- ~/.recipes/.env         - Secrets and environment overrides

This module provides:
- recipes config          - Show current configuration
- recipes config path     - Print the config file path
- recipes config set      - Set a specific value
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from recipes_cli.colors import Colors, color


# =============================================================================
# Config paths
# =============================================================================

def get_recipes_home() -> Path:
    """Get the recipes home directory (~/.recipes)."""
    return Path(os.getenv("RECIPES_HOME", Path.home() / ".recipes"))

def get_config_path() -> Path:
    """Get the main config file path."""
    return get_recipes_home() / "config.yaml"

def get_env_path() -> Path:
    """Get the .env file path."""
    return get_recipes_home() / ".env"

def get_log_dir() -> Path:
    return get_recipes_home() / "logs"

def ensure_recipes_home():
    """Ensure ~/.recipes directory structure exists."""
    home = get_recipes_home()
    (home / "cron").mkdir(parents=True, exist_ok=True)
    (home / "logs").mkdir(parents=True, exist_ok=True)


# =============================================================================
# Config loading/saving
# =============================================================================

DEFAULT_CONFIG = {
    "workspace": {
        "root": "~/.openclaw/workspace",
        "recipes_dir": "recipes",
        "teams_dir": "teams",
        "agents_dir": "agents",
    },

    "cron": {
        # "off" | "prompt" | "on"
        "installation": "prompt",
        # Advisory lock around each sync (one per owner)
        "lock": True,
    },

    "scheduler": {
        "backend": "local",  # "local" (~/.recipes/cron/jobs.json) | "openclaw"
        "command": ["openclaw", "gateway", "call"],
        "timeout": 30,
        "jobs_file": "",     # local backend only; empty = ~/.recipes/cron/jobs.json
    },

    # Config schema version - bump this when adding new required fields
    "_config_version": 1,
}

# Environment variables that override config keys
ENV_OVERRIDES = {
    "RECIPES_CRON_INSTALLATION": "cron.installation",
    "RECIPES_WORKSPACE": "workspace.root",
    "RECIPES_SCHEDULER_BACKEND": "scheduler.backend",
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, preserving nested defaults."""
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


def _set_nested(config: dict, dotted_key: str, value: Any):
    parts = dotted_key.split(".")
    current = config
    for part in parts[:-1]:
        if part not in current or not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def get_nested(config: dict, dotted_key: str, default: Any = None) -> Any:
    current: Any = config
    for part in dotted_key.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def load_config() -> Dict[str, Any]:
    """Load configuration from ~/.recipes/config.yaml, then apply env overrides."""
    config_path = get_config_path()

    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path) as f:
                user_config = yaml.safe_load(f) or {}

            config = _deep_merge(config, user_config)
        except Exception as e:
            print(color(f"Warning: Failed to load config: {e}", Colors.YELLOW), file=sys.stderr)

    for env_key, dotted in ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            _set_nested(config, dotted, value)

    return config


def save_config(config: Dict[str, Any]):
    """Save configuration to ~/.recipes/config.yaml."""
    ensure_recipes_home()
    config_path = get_config_path()

    with open(config_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def set_config_value(key: str, value: str):
    """Set a dotted config key, parsing the value as YAML (so 'true', '30' work)."""
    config_path = get_config_path()
    user_config: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}

    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        parsed = value

    _set_nested(user_config, key, parsed)
    save_config(user_config)
    print(color(f"✓ Set {key} = {parsed}", Colors.GREEN))


def workspace_root(config: Dict[str, Any]) -> Path:
    return Path(os.path.expanduser(str(get_nested(config, "workspace.root", "")))).resolve()


# =============================================================================
# Config display
# =============================================================================

def show_config():
    """Display current configuration."""
    config = load_config()

    print()
    print(color("◆ Paths", Colors.CYAN, Colors.BOLD))
    print(f"  Config:       {get_config_path()}")
    print(f"  Secrets:      {get_env_path()}")
    print(f"  Workspace:    {workspace_root(config)}")

    print()
    print(color("◆ Cron", Colors.CYAN, Colors.BOLD))
    print(f"  Installation: {get_nested(config, 'cron.installation')}")
    print(f"  Lock:         {get_nested(config, 'cron.lock')}")

    print()
    print(color("◆ Scheduler", Colors.CYAN, Colors.BOLD))
    backend = get_nested(config, "scheduler.backend")
    print(f"  Backend:      {backend}")
    if backend == "openclaw":
        print(f"  Command:      {' '.join(get_nested(config, 'scheduler.command', []))}")
        print(f"  Timeout:      {get_nested(config, 'scheduler.timeout')}s")
    else:
        jobs_file = get_nested(config, "scheduler.jobs_file") or get_recipes_home() / "cron" / "jobs.json"
        print(f"  Jobs file:    {jobs_file}")
    print()


def config_command(args):
    """Handle config subcommands."""
    subcmd = getattr(args, 'config_command', None)

    if subcmd is None or subcmd == "show":
        show_config()

    elif subcmd == "set":
        key = getattr(args, 'key', None)
        value = getattr(args, 'value', None)
        if not key or value is None:
            print("Usage: recipes config set KEY VALUE")
            print()
            print("Examples:")
            print("  recipes config set cron.installation on")
            print("  recipes config set scheduler.backend openclaw")
            sys.exit(1)
        set_config_value(key, value)

    elif subcmd == "path":
        print(get_config_path())

    else:
        print(f"Unknown config command: {subcmd}")
        print("Usage: recipes config [show|set|path]")
        sys.exit(1)
