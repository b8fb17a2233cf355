"""
Per-platform file locations for Snap Sync.

``SNAP_SYNC_HOME`` overrides everything: config and logs then both live
in that one directory, which is what container deployments mount.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"

HOME_ENV = "SNAP_SYNC_HOME"
_DIR_NAME = "SnapSync"
_LOG_NAME = "snap_sync.log"


def _home_override() -> Path | None:
    value = os.environ.get(HOME_ENV, "").strip()
    return Path(value).expanduser() if value else None


def get_config_dir() -> Path:
    """
    Return the config directory, created if needed.

    - Windows : ``%APPDATA%\\SnapSync``
    - macOS   : ``~/Library/Application Support/SnapSync``
    - Linux   : ``$XDG_CONFIG_HOME/SnapSync`` (default ``~/.config``)
    """
    if (override := _home_override()) is not None:
        config_dir = override
    elif IS_WINDOWS:
        config_dir = Path(os.environ.get("APPDATA", Path.home())) / _DIR_NAME
    elif IS_MACOS:
        config_dir = Path.home() / "Library" / "Application Support" / _DIR_NAME
    else:
        config_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / _DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_dir() -> Path:
    """
    Return the log directory, created if needed.

    - Windows : ``%LOCALAPPDATA%\\SnapSync\\Logs``
    - macOS   : ``~/Library/Logs/SnapSync``
    - Linux   : ``$XDG_STATE_HOME/SnapSync`` (default ``~/.local/state``)
    """
    if (override := _home_override()) is not None:
        log_dir = override
    elif IS_WINDOWS:
        log_dir = Path(os.environ.get("LOCALAPPDATA", Path.home())) / _DIR_NAME / "Logs"
    elif IS_MACOS:
        log_dir = Path.home() / "Library" / "Logs" / _DIR_NAME
    else:
        log_dir = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / _DIR_NAME

    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_path() -> Path:
    """Return the default log file path."""
    return get_log_dir() / _LOG_NAME
