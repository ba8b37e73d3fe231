"""Shared constants for package-assistant."""

PROGRAM_NAME = "package-assistant"

# Settings defaults
DEFAULT_TIMEOUT = 120.0
DEFAULT_REFRESH_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 1.0
DEFAULT_TEST_PACKAGE = "tree"

# Distro id used when only override commands are configured
CUSTOM_DISTRO_ID = "custom"

# Diagnostic capture is bounded to the last N characters of each stream
OUTPUT_TAIL_CHARS = 2000

# Package name that no repository ships; used by the self-test suite
MISSING_PACKAGE_NAME = "package-assistant-nonexistent-package"

# XDG locations (root fallbacks are relative to $HOME)
CONFIG_HOME_ENV = "XDG_CONFIG_HOME"
DEFAULT_CONFIG_DIR = ".config"
DATA_HOME_ENV = "XDG_DATA_HOME"
DEFAULT_DATA_DIR = ".local/share"
SETTINGS_FILE_STEM = "settings"
DATA_FILE_NAME = "data.yaml"

SETTINGS_SUFFIXES = (".toml", ".yaml", ".yml")

# CLI exit codes
EXIT_OK = 0
EXIT_OPERATION_FAILED = 1
EXIT_CONFIG_ERROR = 3
