import os
from pathlib import Path

"""Global constants and configuration path definitions for Nabu.

This module defines the filesystem layout (adhering to XDG standards where
applicable), application identifiers, and the defaults shared by the watcher,
the commit engine and the push gate.
"""

# --- Identity ---
APP_NAME = "nabu"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "nabu"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "nabu.log"
"""Path: The file path for the watcher logs."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
CONFIG_DIR: Path = Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"
"""Path: The directory holding the global configuration file."""

CONFIG_FILE: Path = CONFIG_DIR / "nabu.toml"
"""Path: The global configuration file path."""

LOCAL_CONFIG_NAME = "nabu.toml"
"""str: The per-directory configuration file name."""

# --- Git / Logic Constants ---
GIT_DIR_NAME = ".git"
"""str: The repository metadata directory. Never watched, never committed."""

DEFAULT_DELAY = 30
"""int: Default quiet window (seconds) before a batch settles."""

DEFAULT_PUSH_TIMEOUT = 5
"""int: Default upper bound (seconds) for the exit-time push."""

DEFAULT_IGNORES = [GIT_DIR_NAME]
"""list[str]: Path components whose events are dropped by default."""

COMMIT_MESSAGE_FORMAT = "nabu snapshot @ {timestamp}"
"""str: Message template for every automatic commit."""

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
"""str: strftime format of the timestamp embedded in commit messages."""

GIT_LOCK_FILES = [
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "BISECT_LOG",
    "rebase-merge",
    "rebase-apply",
]
"""
list[str]: Git internal files indicating an
active state (merge/rebase) that blocks automatic commits.
"""
