"""Changelog entries of cached RPM packages that are newer than the installed ones.

Package managers of the RPM families keep downloaded packages in a cache
directory. Comparing each cached package's changelog with the newest entry
of the installed package shows what an upgrade would bring.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .distro import DNF, ZYPPER, DistroAdapter, SystemAdapter
from .operations import OperationResult, OperationStatus, tail

logger = logging.getLogger(__name__)

RPM_FAMILIES = frozenset({DNF.name, ZYPPER.name})

_ENTRY_MARKER = "@@changelog-entry"

# One header line with the package name, then every changelog entry
_CACHED_QUERY_FORMAT = (
    "%{NAME}\n" f"[{_ENTRY_MARKER} %{{CHANGELOGTIME}}\n%{{CHANGELOGTEXT}}\n]"
)

# Without brackets rpm prints only the newest entry's time
_INSTALLED_QUERY_FORMAT = "%{CHANGELOGTIME}\n"


@dataclass(frozen=True)
class ChangelogEntry:
    """One changelog entry of a package."""

    timestamp: int
    text: str

    def __str__(self) -> str:
        day = datetime.fromtimestamp(self.timestamp, tz=timezone.utc).date()
        return f"* {day.isoformat()}\n{self.text}"


@dataclass(frozen=True)
class PackageChangelog:
    """Entries of one cached package newer than what is installed."""

    name: str
    entries: tuple[ChangelogEntry, ...] = ()

    def __str__(self) -> str:
        body = "\n".join(str(entry) for entry in self.entries)
        return f"==== {self.name} ====\n{body}"


@dataclass
class ChangelogListing:
    """Normalized result of a changelog lookup."""

    result: OperationResult
    changelogs: list[PackageChangelog] = field(default_factory=list)


def supports_changelogs(adapter: DistroAdapter) -> bool:
    return isinstance(adapter, SystemAdapter) and adapter.name in RPM_FAMILIES


def parse_rpm_changelog(output: str) -> tuple[str, list[ChangelogEntry]]:
    """Parse ``rpm -qp`` output produced with the cached query format.

    Returns:
        The package name and its entries, newest first as rpm lists them.
        Entries whose timestamp cannot be read are dropped with a warning.
    """
    lines = output.splitlines()
    if not lines:
        return "", []

    name = lines[0].strip()
    parsed: list[tuple[int, list[str]]] = []
    current: list[str] | None = None
    for line in lines[1:]:
        if line.startswith(_ENTRY_MARKER):
            stamp = line[len(_ENTRY_MARKER) :].strip()
            try:
                timestamp = int(stamp)
            except ValueError:
                logger.warning(f"Skipping changelog entry of {name} with time {stamp!r}")
                current = None
                continue
            current = []
            parsed.append((timestamp, current))
        elif current is not None:
            current.append(line)

    entries = [
        ChangelogEntry(timestamp=timestamp, text="\n".join(text).strip())
        for timestamp, text in parsed
    ]
    return name, entries


def installed_changelog_time(adapter: SystemAdapter, name: str) -> int:
    """Time of the newest changelog entry of an installed package.

    Returns 0 when the package is not installed or rpm prints nothing
    usable, so every cached entry counts as new.
    """
    output = adapter.run_argv(
        ["rpm", "-q", "--qf", _INSTALLED_QUERY_FORMAT, name],
        output_limit=None,
        elevate=False,
    )
    if output.exit_code != 0:
        logger.debug(f"{name} is not installed, showing its full changelog")
        return 0

    first_line = next(iter(output.stdout.splitlines()), "").strip()
    try:
        return int(first_line)
    except ValueError:
        logger.warning(f"Unexpected changelog time for {name}: {first_line!r}")
        return 0


def _cached_packages(directory: Path, query: str | None) -> list[Path]:
    packages = sorted(p for p in directory.rglob("*.rpm") if p.is_file())
    if query:
        packages = [p for p in packages if p.name.startswith(query)]
    return packages


def collect_changelogs(
    adapter: DistroAdapter, directory: Path, query: str | None = None
) -> ChangelogListing:
    """Collect changelog entries of cached packages newer than the installed ones.

    CONTRACT:
      Inputs:
        - adapter: adapter of an RPM family (dnf or zypper)
        - directory: package cache, searched recursively for ``*.rpm``
        - query: only packages whose file name starts with it, all if None
      Outputs:
        - ChangelogListing with one PackageChangelog per cached package
          that has newer entries
      Invariants:
        - Never raises for package-manager failures
        - UNSUPPORTED for adapters outside the RPM families or when rpm
          is missing
        - NOT_FOUND when the directory holds no matching package
        - A package rpm cannot read is skipped with a warning
    """
    if not isinstance(adapter, SystemAdapter) or adapter.name not in RPM_FAMILIES:
        return ChangelogListing(
            result=OperationResult.unsupported(
                f"{adapter.name} adapter cannot read package changelogs"
            )
        )
    if not directory.is_dir():
        return ChangelogListing(
            result=OperationResult(
                status=OperationStatus.NOT_FOUND,
                stderr_tail=f"Package cache {directory} does not exist",
            )
        )

    packages = _cached_packages(directory, query)
    if not packages:
        matching = f" matching '{query}'" if query else ""
        return ChangelogListing(
            result=OperationResult(
                status=OperationStatus.NOT_FOUND,
                stderr_tail=f"No cached packages{matching} in {directory}",
            )
        )

    changelogs = []
    for package in packages:
        output = adapter.run_argv(
            ["rpm", "-qp", "--qf", _CACHED_QUERY_FORMAT, str(package)],
            output_limit=None,
            elevate=False,
        )
        if output.not_executable:
            return ChangelogListing(
                result=OperationResult.unsupported(f"rpm is not available: {output.stderr}")
            )
        if output.exit_code != 0:
            logger.warning(
                f"Cannot read {package.name}: {tail(output.stderr, 200).strip()}"
            )
            continue

        name, entries = parse_rpm_changelog(output.stdout)
        if not name:
            logger.warning(f"rpm printed nothing for {package.name}")
            continue

        installed_time = installed_changelog_time(adapter, name)
        newer = tuple(entry for entry in entries if entry.timestamp > installed_time)
        logger.debug(f"{package.name}: {len(newer)} of {len(entries)} entries are new")
        if newer:
            changelogs.append(PackageChangelog(name=name, entries=newer))

    return ChangelogListing(
        result=OperationResult(status=OperationStatus.SUCCESS, raw_exit_code=0),
        changelogs=changelogs,
    )
