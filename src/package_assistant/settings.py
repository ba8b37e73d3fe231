"""Settings loading and validation for distro profile files."""

import logging
import re
import shutil
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from . import paths
from .constants import (
    CUSTOM_DISTRO_ID,
    DEFAULT_REFRESH_RETRIES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_TEST_PACKAGE,
    DEFAULT_TIMEOUT,
    SETTINGS_FILE_STEM,
    SETTINGS_SUFFIXES,
)

logger = logging.getLogger(__name__)

_DISTRO_ID_PATTERN = re.compile(r"[a-z0-9][a-z0-9._-]*")

KNOWN_KEYS = frozenset(
    {
        "distro_id",
        "repository_sources",
        "dependencies",
        "refresh_command",
        "install_command",
        "timeout",
        "refresh_retries",
        "retry_backoff",
        "test_package",
        "privilege_command",
        "cached_package_path",
    }
)


class ConfigErrorKind(Enum):
    """Categories of fatal configuration errors."""

    MISSING_FIELD = "MissingField"
    MALFORMED_SYNTAX = "MalformedSyntax"
    INVALID_DISTRO_ID = "InvalidDistroId"
    UNKNOWN_DISTRO = "UnknownDistro"


class ConfigError(Exception):
    """Raised when a settings file cannot be turned into valid Settings."""

    def __init__(self, kind: ConfigErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class Settings:
    """Validated, in-memory distro profile."""

    distro_id: str
    repository_sources: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    refresh_command_override: str | None = None
    install_command_override: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    refresh_retries: int = DEFAULT_REFRESH_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    test_package: str = DEFAULT_TEST_PACKAGE
    privilege_command: str | None = None
    cached_package_path: Path | None = None
    source_path: Path | None = field(default=None, compare=False)

    @property
    def has_overrides(self) -> bool:
        """True when both custom commands are configured."""
        return (
            self.refresh_command_override is not None
            and self.install_command_override is not None
        )


def _parse_document(path: Path) -> dict[str, Any]:
    """Read and parse a settings file according to its suffix.

    Raises:
        ConfigError: MALFORMED_SYNTAX if the file is unreadable, fails to
            parse, or is not a key/value mapping
    """
    suffix = path.suffix.lower()
    if suffix not in SETTINGS_SUFFIXES:
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX,
            f"Unsupported settings format '{suffix or path.name}'. "
            f"Use one of: {', '.join(SETTINGS_SUFFIXES)}",
        )

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX, f"Cannot read {path}: {e}"
        ) from None

    try:
        if suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX, f"Cannot parse {path}: {e}"
        ) from None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX,
            f"{path} must contain a key/value mapping at the top level",
        )
    return data


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX,
            f"'{key}' must be a non-empty string",
        )
    return value.strip()


def _optional_path(data: dict[str, Any], key: str) -> Path | None:
    value = _optional_str(data, key)
    return Path(value).expanduser() if value is not None else None


def _str_list(data: dict[str, Any], key: str) -> tuple[str, ...]:
    """Read a list of non-empty strings, preserving order and dropping repeats."""
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX,
            f"'{key}' must be a list of non-empty strings",
        )
    return tuple(dict.fromkeys(item.strip() for item in value))


def _number(
    data: dict[str, Any],
    key: str,
    default: float,
    *,
    integer: bool = False,
    allow_zero: bool = True,
) -> Any:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    valid_types = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, valid_types):
        kind = "an integer" if integer else "a number"
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX, f"'{key}' must be {kind}"
        )
    if value < 0 or (value == 0 and not allow_zero):
        bound = "zero or more" if allow_zero else "greater than zero"
        raise ConfigError(
            ConfigErrorKind.MALFORMED_SYNTAX, f"'{key}' must be {bound}"
        )
    return value


def _validate_distro_id(data: dict[str, Any], has_overrides: bool) -> str:
    """Validate the distro_id field.

    Args:
        data: Parsed settings mapping
        has_overrides: Whether both override commands are present

    Returns:
        The normalized distro identifier

    Raises:
        ConfigError: MISSING_FIELD if absent without overrides,
            INVALID_DISTRO_ID if not a well-formed identifier
    """
    if "distro_id" not in data or data["distro_id"] is None:
        if has_overrides:
            return CUSTOM_DISTRO_ID
        raise ConfigError(
            ConfigErrorKind.MISSING_FIELD,
            "'distro_id' is required unless both 'refresh_command' "
            "and 'install_command' are provided",
        )

    distro_id = data["distro_id"]
    if not isinstance(distro_id, str) or not _DISTRO_ID_PATTERN.fullmatch(
        distro_id.strip()
    ):
        raise ConfigError(
            ConfigErrorKind.INVALID_DISTRO_ID,
            f"Invalid distro_id {distro_id!r}: expected a lowercase identifier "
            "such as 'debian-like'",
        )
    return distro_id.strip()


def parse_settings(data: dict[str, Any], source_path: Path | None = None) -> Settings:
    """Validate a parsed settings mapping.

    Every field is checked before returning, so callers never see a
    partially valid profile.

    Raises:
        ConfigError: On the first invalid or missing field
    """
    unknown = sorted(set(data) - KNOWN_KEYS)
    if unknown:
        logger.debug(f"Ignoring unknown settings keys: {', '.join(unknown)}")

    refresh_command = _optional_str(data, "refresh_command")
    install_command = _optional_str(data, "install_command")
    if (refresh_command is None) != (install_command is None):
        missing = "install_command" if install_command is None else "refresh_command"
        raise ConfigError(
            ConfigErrorKind.MISSING_FIELD,
            f"'{missing}' is required when a custom command override is used",
        )

    distro_id = _validate_distro_id(data, refresh_command is not None)

    test_package = _optional_str(data, "test_package") or DEFAULT_TEST_PACKAGE

    return Settings(
        distro_id=distro_id,
        repository_sources=_str_list(data, "repository_sources"),
        dependencies=_str_list(data, "dependencies"),
        refresh_command_override=refresh_command,
        install_command_override=install_command,
        timeout=float(_number(data, "timeout", DEFAULT_TIMEOUT, allow_zero=False)),
        refresh_retries=_number(
            data, "refresh_retries", DEFAULT_REFRESH_RETRIES, integer=True
        ),
        retry_backoff=float(_number(data, "retry_backoff", DEFAULT_RETRY_BACKOFF)),
        test_package=test_package,
        privilege_command=_optional_str(data, "privilege_command"),
        cached_package_path=_optional_path(data, "cached_package_path"),
        source_path=source_path,
    )


def load_settings(path: Path) -> Settings:
    """Load and validate a settings file.

    Performs no side effects: on failure nothing has been written or run.

    Raises:
        ConfigError: If the file is unreadable, malformed, or incomplete
    """
    path = Path(path)
    data = _parse_document(path)
    return parse_settings(data, source_path=path)


def installed_settings_path() -> Path | None:
    """Locate the settings file installed by a previous ``init``.

    Returns:
        Path to the installed settings, or None if none is installed
    """
    directory = paths.config_dir()
    for suffix in SETTINGS_SUFFIXES:
        candidate = directory / f"{SETTINGS_FILE_STEM}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def install_settings(path: Path) -> tuple[Settings, Path]:
    """Validate a settings file and copy it into the config directory.

    Any previously installed settings file is replaced, whatever its format.

    Returns:
        The validated settings and the installed file path

    Raises:
        ConfigError: If the file is invalid (nothing is copied)
    """
    path = Path(path)
    settings = load_settings(path)

    directory = paths.config_dir()
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / f"{SETTINGS_FILE_STEM}{path.suffix.lower()}"

    # Copy before removing other formats so a failed copy keeps the old file
    if path.resolve() != target.resolve():
        shutil.copyfile(path, target)

    for suffix in SETTINGS_SUFFIXES:
        stale = directory / f"{SETTINGS_FILE_STEM}{suffix}"
        if stale != target and stale.exists():
            stale.unlink()
    logger.debug(f"Installed settings from {path} to {target}")
    return settings, target
