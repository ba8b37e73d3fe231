"""Persistent record of the last successful ``init``."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from . import paths
from .constants import DATA_FILE_NAME

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


@dataclass
class InstallState:
    """What the last init run left on the system."""

    update_timestamp: int = 0
    distro_id: str | None = None
    dependencies: list[str] = field(default_factory=list)
    init_completed: bool = False

    def matches(self, distro_id: str, dependencies: tuple[str, ...]) -> bool:
        """True if a completed init was recorded for this exact profile."""
        return (
            self.init_completed
            and self.distro_id == distro_id
            and set(self.dependencies) == set(dependencies)
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstallState":
        return cls(
            update_timestamp=int(data.get("update_timestamp", 0)),
            distro_id=data.get("distro_id"),
            dependencies=list(data.get("dependencies") or []),
            init_completed=bool(data.get("init_completed", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "update_timestamp": self.update_timestamp,
            "distro_id": self.distro_id,
            "dependencies": self.dependencies,
            "init_completed": self.init_completed,
        }


def state_path() -> Path:
    return paths.data_dir() / DATA_FILE_NAME


def load_state(path: Path | None = None) -> InstallState:
    """Load the recorded state, or a fresh one if nothing was recorded.

    Raises:
        StateError: If the file exists but is unreadable or corrupt
    """
    path = path or state_path()
    if not path.exists():
        return InstallState()

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise StateError(f"Cannot read state file {path}: {e}") from None

    if not isinstance(data, dict):
        raise StateError(f"State file {path} is not a mapping")
    try:
        return InstallState.from_dict(data)
    except (TypeError, ValueError) as e:
        raise StateError(f"State file {path} is invalid: {e}") from None


def record_init(
    distro_id: str, dependencies: tuple[str, ...], path: Path | None = None
) -> InstallState:
    """Record a completed init run.

    Raises:
        StateError: If the file cannot be written
    """
    path = path or state_path()
    state = InstallState(
        update_timestamp=int(time.time()),
        distro_id=distro_id,
        dependencies=list(dependencies),
        init_completed=True,
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(state.to_dict(), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise StateError(f"Cannot write state file {path}: {e}") from None
    logger.debug(f"Recorded init state in {path}")
    return state
