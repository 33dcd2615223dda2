"""Configuration management for Agent Panel."""

import copy
import json
import os
import sys
from pathlib import Path

from models import TerminalConfig

APP_NAME = "AgentPanel"

DEFAULT_CONFIG = {
    "command": "claude",  # program started in each session
    "args": [],  # list[str]
    "auto_run": True,  # shell mode only: type the command into the shell
    "shell": "",  # override, empty means platform default
    "env": {},  # dict[str, str] - extra environment variables
    "direct_mode": True,  # spawn the command directly instead of a shell
    "notification_delay_ms": 300,  # prompt must stay quiet this long before alerting
    "prompt_patterns": [],  # list[str] - extra regexes that look like input prompts
    "workspace_folders": [],  # list[str] - candidate working directories
    "preload_commands": [],  # list[str] - programs whose help is fetched at startup
    "help": {
        "timeout_ms": 5000,
        "debounce_ms": 300,
        "cache_max_age_s": 300,
        "cache_max_size": 50,
    },
    "log_level": "INFO",
}


def _config_dir() -> Path:
    """Get the platform-specific configuration directory."""
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_NAME
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        return Path(base) / APP_NAME


def _config_path() -> Path:
    """Get the configuration file path."""
    return _config_dir() / "settings.json"


def default_config() -> dict:
    """Fresh copy of the defaults, safe to mutate."""
    return copy.deepcopy(DEFAULT_CONFIG)


def load_config(path: Path | None = None) -> dict:
    """Load configuration from file, falling back to defaults."""
    p = path or _config_path()
    try:
        with p.open("r", encoding="utf-8") as f:
            cfg = json.load(f)
    except (OSError, ValueError):
        return default_config()
    if not isinstance(cfg, dict):
        return default_config()

    # Fill any missing keys with defaults
    for k, v in DEFAULT_CONFIG.items():
        cfg.setdefault(k, copy.deepcopy(v))
    if not isinstance(cfg["help"], dict):
        cfg["help"] = copy.deepcopy(DEFAULT_CONFIG["help"])
    for k, v in DEFAULT_CONFIG["help"].items():
        cfg["help"].setdefault(k, v)
    return cfg


def terminal_config_from(cfg: dict) -> TerminalConfig:
    """Build the immutable spawn snapshot from the settings dict."""
    return TerminalConfig(
        command=str(cfg.get("command") or ""),
        args=tuple(str(a) for a in cfg.get("args") or []),
        auto_run=bool(cfg.get("auto_run", True)),
        shell=str(cfg.get("shell") or ""),
        env={str(k): str(v) for k, v in (cfg.get("env") or {}).items()},
        direct_mode=bool(cfg.get("direct_mode", True)),
    )


def get_prompt_patterns(cfg: dict) -> list[str]:
    """User-supplied prompt regexes."""
    return [p for p in cfg.get("prompt_patterns", []) if isinstance(p, str) and p]


def get_notification_delay(cfg: dict) -> int:
    """Delay in milliseconds before a matched prompt raises a notification."""
    try:
        return max(0, int(cfg.get("notification_delay_ms", 300)))
    except (TypeError, ValueError):
        return 300


def get_workspace_folders(cfg: dict) -> list[Path]:
    """Candidate working directories, in configured order."""
    return [Path(p).expanduser() for p in cfg.get("workspace_folders", []) if p]


def get_help_options(cfg: dict) -> dict:
    """Options for the help executor, in the executor's units."""
    help_cfg = {**DEFAULT_CONFIG["help"], **(cfg.get("help") or {})}
    return {
        "timeout": help_cfg["timeout_ms"] / 1000.0,
        "debounce_ms": int(help_cfg["debounce_ms"]),
        "cache_max_age": float(help_cfg["cache_max_age_s"]),
        "cache_max_size": int(help_cfg["cache_max_size"]),
    }
