"""XDG directory resolution for installed settings and state."""

import os
from pathlib import Path

from .constants import (
    CONFIG_HOME_ENV,
    DATA_HOME_ENV,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DATA_DIR,
    PROGRAM_NAME,
)


def _xdg_dir(env_var: str, default: str) -> Path:
    """Resolve an XDG base directory for this program.

    Uses the environment variable when it is set and non-empty, otherwise
    falls back to ``$HOME/<default>``.
    """
    base = os.environ.get(env_var)
    if base:
        return Path(base) / PROGRAM_NAME
    return Path.home() / default / PROGRAM_NAME


def config_dir() -> Path:
    """Directory holding the installed settings file."""
    return _xdg_dir(CONFIG_HOME_ENV, DEFAULT_CONFIG_DIR)


def data_dir() -> Path:
    """Directory holding the install state file."""
    return _xdg_dir(DATA_HOME_ENV, DEFAULT_DATA_DIR)
