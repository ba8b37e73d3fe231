"""Package operation requests and normalized results."""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from .constants import OUTPUT_TAIL_CHARS


@dataclass(frozen=True)
class Refresh:
    """Refresh repository metadata."""

    def describe(self) -> str:
        return "refresh"


@dataclass(frozen=True)
class Install:
    """Install packages in a single package-manager transaction."""

    names: tuple[str, ...]

    def describe(self) -> str:
        return f"install {' '.join(self.names)}"


@dataclass(frozen=True)
class Query:
    """Check whether a package is installed."""

    name: str

    def describe(self) -> str:
        return f"query {self.name}"


@dataclass(frozen=True)
class Remove:
    """Remove packages."""

    names: tuple[str, ...]

    def describe(self) -> str:
        return f"remove {' '.join(self.names)}"


PackageOperation = Union[Refresh, Install, Query, Remove]


class Capability(Enum):
    """Adapter capabilities, one per operation variant."""

    REFRESH = "refresh"
    INSTALL = "install"
    QUERY = "query"
    REMOVE = "remove"


def required_capability(operation: PackageOperation) -> Capability:
    """Return the capability an adapter needs to execute ``operation``."""
    if isinstance(operation, Refresh):
        return Capability.REFRESH
    if isinstance(operation, Install):
        return Capability.INSTALL
    if isinstance(operation, Query):
        return Capability.QUERY
    if isinstance(operation, Remove):
        return Capability.REMOVE
    raise TypeError(f"Unknown package operation: {operation!r}")


class OperationStatus(Enum):
    """Normalized outcome of a package operation."""

    SUCCESS = "Success"
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    NETWORK_FAILURE = "NetworkFailure"
    UNSUPPORTED = "Unsupported"
    FAILURE = "Failure"


def tail(text: str | None, limit: int | None = OUTPUT_TAIL_CHARS) -> str:
    """Keep only the last ``limit`` characters of ``text`` (all if None)."""
    if not text:
        return ""
    if limit is None:
        return text
    return text[-limit:]


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one adapter operation.

    ``timed_out`` marks a NETWORK_FAILURE caused by the operation timeout;
    callers use it to decide whether a retry is allowed.
    """

    status: OperationStatus
    raw_exit_code: int | None = None
    stdout_tail: str = ""
    stderr_tail: str = ""
    timed_out: bool = False
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @classmethod
    def unsupported(cls, reason: str) -> "OperationResult":
        """Result for an operation the adapter cannot perform."""
        return cls(status=OperationStatus.UNSUPPORTED, stderr_tail=tail(reason))

    def summary(self) -> str:
        """One-line description used in CLI output and reports."""
        parts = [self.status.value]
        if self.timed_out:
            parts.append("timed out")
        if self.raw_exit_code is not None:
            parts.append(f"exit code {self.raw_exit_code}")
        return ", ".join(parts)
