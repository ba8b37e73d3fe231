"""Listing of pending package updates for each package-manager family."""

import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from .distro import (
    APK,
    APT,
    DNF,
    PACMAN,
    ZYPPER,
    DistroAdapter,
    SystemAdapter,
    classify,
)
from .operations import Capability, OperationResult, OperationStatus, tail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageUpdate:
    """A package with a newer version available."""

    name: str
    new_version: str | None = None
    old_version: str | None = None

    def __str__(self) -> str:
        text = self.name
        if self.new_version:
            text += f" ({self.new_version})"
            if self.old_version:
                text += f" <- ({self.old_version})"
        return text


@dataclass
class UpdateListing:
    """Normalized result of an update check."""

    result: OperationResult
    updates: list[PackageUpdate] = field(default_factory=list)


def parse_zypper_updates(output: str) -> list[PackageUpdate]:
    """Parse ``zypper --xmlout list-updates`` output."""
    # zypper prints progress lines before the XML document
    start = output.find("<?xml")
    if start == -1:
        start = output.find("<stream")
    if start == -1:
        return []

    try:
        root = ET.fromstring(output[start:])
    except ET.ParseError as e:
        logger.warning(f"Cannot parse zypper XML output: {e}")
        return []

    items = []
    for update in root.iter("update"):
        name = update.get("name")
        if name:
            items.append(
                PackageUpdate(
                    name=name,
                    new_version=update.get("edition"),
                    old_version=update.get("edition-old"),
                )
            )
    return items


_DNF_LINE = re.compile(r"^(\S+)\.([A-Za-z0-9_]+)\s+(\S+)\s+(\S+)\s*$")


def parse_dnf_updates(output: str) -> list[PackageUpdate]:
    """Parse ``dnf check-update`` output (``name.arch  version  repo``)."""
    items = []
    for line in output.splitlines():
        if line.startswith("Obsoleting"):
            break
        match = _DNF_LINE.match(line)
        if match:
            name, _arch, version, _repo = match.groups()
            items.append(PackageUpdate(name=name, new_version=version))
    return items


_APT_LINE = re.compile(r"^([^/\s]+)/\S+\s+(\S+)\s+\S+\s+\[upgradable from: ([^\]]+)\]")


def parse_apt_updates(output: str) -> list[PackageUpdate]:
    """Parse ``apt list --upgradable`` output."""
    items = []
    for line in output.splitlines():
        match = _APT_LINE.match(line)
        if match:
            name, new, old = match.groups()
            items.append(PackageUpdate(name=name, new_version=new, old_version=old))
    return items


_PACMAN_LINE = re.compile(r"^(\S+)\s+(\S+)\s+->\s+(\S+)")


def parse_pacman_updates(output: str) -> list[PackageUpdate]:
    """Parse ``pacman -Qu`` output (``name old -> new``)."""
    items = []
    for line in output.splitlines():
        match = _PACMAN_LINE.match(line)
        if match:
            name, old, new = match.groups()
            items.append(PackageUpdate(name=name, new_version=new, old_version=old))
    return items


_APK_LINE = re.compile(r"^(\S+?)-(\d[^\s-]*-r\d+)\s+<\s+(\S+)")


def parse_apk_updates(output: str) -> list[PackageUpdate]:
    """Parse ``apk version -l '<'`` output (``name-old < new``)."""
    items = []
    for line in output.splitlines():
        match = _APK_LINE.match(line)
        if match:
            name, old, new = match.groups()
            items.append(PackageUpdate(name=name, new_version=new, old_version=old))
    return items


@dataclass(frozen=True)
class _UpdateCommand:
    argv: tuple[str, ...]
    parse: Callable[[str], list[PackageUpdate]]
    success_exit_codes: frozenset[int] = frozenset({0})


# dnf check-update exits 100 when updates exist; pacman -Qu exits 1 when none
UPDATE_COMMANDS: dict[str, _UpdateCommand] = {
    APT.name: _UpdateCommand(("apt", "list", "--upgradable"), parse_apt_updates),
    DNF.name: _UpdateCommand(
        ("dnf", "check-update"), parse_dnf_updates, frozenset({0, 100})
    ),
    ZYPPER.name: _UpdateCommand(
        ("zypper", "--non-interactive", "--xmlout", "list-updates"),
        parse_zypper_updates,
        ZYPPER.success_exit_codes,
    ),
    PACMAN.name: _UpdateCommand(("pacman", "-Qu"), parse_pacman_updates),
    APK.name: _UpdateCommand(("apk", "version", "-l", "<"), parse_apk_updates),
}


def list_updates(adapter: DistroAdapter) -> UpdateListing:
    """Ask the adapter's package manager which installed packages are outdated.

    Never raises for package-manager failures; the listing's result carries
    the normalized status.
    """
    command = UPDATE_COMMANDS.get(adapter.name)
    if command is None or not isinstance(adapter, SystemAdapter):
        return UpdateListing(
            result=OperationResult.unsupported(
                f"{adapter.name} adapter cannot list updates"
            )
        )

    output = adapter.run_argv(command.argv, output_limit=None)

    if output.exit_code in command.success_exit_codes or (
        adapter.name == PACMAN.name
        and output.exit_code == 1
        and not output.stdout.strip()
    ):
        result = OperationResult(
            status=OperationStatus.SUCCESS,
            raw_exit_code=output.exit_code,
            stdout_tail=tail(output.stdout),
            stderr_tail=tail(output.stderr),
            command=output.argv,
        )
        return UpdateListing(result=result, updates=command.parse(output.stdout))

    bounded = replace(output, stdout=tail(output.stdout), stderr=tail(output.stderr))
    return UpdateListing(result=classify(adapter.family, Capability.REFRESH, bounded))
