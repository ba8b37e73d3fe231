"""Distribution adapter infrastructure for multi-distro package management.

This module provides:
- DistroAdapter protocol defining the normalized package operations
- PackageManagerFamily records describing each package manager's command
  templates and result-classification table
- SystemAdapter, which drives any family, and CustomCommandAdapter, which
  runs user-supplied override commands
"""

import logging
import os
import shlex
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .constants import DEFAULT_TIMEOUT, OUTPUT_TAIL_CHARS
from .operations import (
    Capability,
    Install,
    OperationResult,
    OperationStatus,
    PackageOperation,
    Query,
    Refresh,
    Remove,
    required_capability,
)
from .process import CommandOutput, run_command

logger = logging.getLogger(__name__)

# Template placeholders, each expanded to zero or more argv items
REPOS = "{repos}"
PACKAGES = "{packages}"
PACKAGE = "{package}"

Runner = Callable[..., CommandOutput]

# Exit status of ``sh -c`` when the command itself does not exist
SHELL_COMMAND_NOT_FOUND = 127

ALL_CAPABILITIES = frozenset(Capability)

_COMMON_NOT_FOUND = (
    "not found",
    "no match for",
    "unable to find a match",
    "is not installed",
)
_COMMON_PERMISSION = (
    "permission denied",
    "operation not permitted",
    "are you root",
    "must be root",
    "superuser",
    "root privileges",
    "unless you are root",
)
_COMMON_NETWORK = (
    "could not resolve",
    "temporary failure resolving",
    "temporary failure in name resolution",
    "network is unreachable",
    "connection timed out",
    "connection refused",
    "failed to fetch",
    "failed to download",
    "cannot download",
    "curl error",
    "dns lookup error",
    "temporary error",
    "failed retrieving file",
    "failed to synchronize",
)


@dataclass(frozen=True)
class PackageManagerFamily:
    """Command templates and classification table for one package manager.

    Templates are argv tuples. ``{repos}`` expands to the repository option
    followed by a source URI for every configured source, ``{packages}`` to
    the package names and ``{package}`` to a single name.
    """

    name: str
    display_name: str
    refresh: tuple[str, ...]
    install: tuple[str, ...]
    query: tuple[str, ...]
    remove: tuple[str, ...]
    repository_option: str | None = None
    success_exit_codes: frozenset[int] = frozenset({0})
    query_missing_exit_codes: frozenset[int] = frozenset({1})
    not_found_exit_codes: frozenset[int] = frozenset()
    permission_exit_codes: frozenset[int] = frozenset()
    network_exit_codes: frozenset[int] = frozenset()
    query_installed_marker: str | None = None
    # Refresh output that means stale metadata despite a success exit code
    degraded_refresh_patterns: tuple[str, ...] = ()
    not_found_patterns: tuple[str, ...] = ()
    permission_patterns: tuple[str, ...] = ()
    network_patterns: tuple[str, ...] = ()

    @property
    def executable(self) -> str:
        return self.refresh[0]


APT = PackageManagerFamily(
    name="apt",
    display_name="Debian-style (apt)",
    refresh=("apt-get", "update"),
    install=(
        "apt-get",
        "install",
        "-y",
        "--no-install-recommends",
        PACKAGES,
    ),
    query=("dpkg-query", "-W", "-f=${Status}", PACKAGE),
    remove=("apt-get", "remove", "-y", PACKAGES),
    query_installed_marker="install ok installed",
    # apt-get update only warns and exits 0 when mirrors are unreachable
    degraded_refresh_patterns=("some index files failed to download",),
    not_found_patterns=(
        "unable to locate package",
        "no packages found matching",
        "has no installation candidate",
    ),
    permission_patterns=("could not open lock file",),
    network_patterns=("some index files failed to download",),
)

DNF = PackageManagerFamily(
    name="dnf",
    display_name="RPM-style (dnf)",
    refresh=("dnf", "makecache", "--refresh", "-y"),
    install=("dnf", "install", "-y", PACKAGES),
    query=("rpm", "-q", PACKAGE),
    remove=("dnf", "remove", "-y", PACKAGES),
    not_found_patterns=("no packages marked for removal",),
    permission_patterns=("has to be run with superuser privileges",),
    network_patterns=(
        "failed to download metadata",
        "cannot download repomd.xml",
        "librepo",
    ),
)

# zypper documents its exit codes: 5 privileges, 100-103 informational,
# 104 capability not found, 106 repositories skipped after refresh errors
ZYPPER = PackageManagerFamily(
    name="zypper",
    display_name="RPM-style (zypper)",
    refresh=("zypper", "--non-interactive", REPOS, "refresh"),
    install=("zypper", "--non-interactive", REPOS, "install", PACKAGES),
    query=("rpm", "-q", PACKAGE),
    remove=("zypper", "--non-interactive", REPOS, "remove", PACKAGES),
    repository_option="--plus-repo",
    success_exit_codes=frozenset({0, 100, 101, 102, 103}),
    not_found_exit_codes=frozenset({104}),
    permission_exit_codes=frozenset({5}),
    network_exit_codes=frozenset({106}),
    not_found_patterns=("not found in package names", "no provider of"),
    network_patterns=("download (curl) error", "valid metadata not found"),
)

PACMAN = PackageManagerFamily(
    name="pacman",
    display_name="Arch-style (pacman)",
    refresh=("pacman", "-Sy", "--noconfirm"),
    install=("pacman", "-S", "--noconfirm", "--needed", PACKAGES),
    query=("pacman", "-Q", PACKAGE),
    remove=("pacman", "-R", "--noconfirm", PACKAGES),
    not_found_patterns=("target not found", "was not found"),
    permission_patterns=("unable to lock database",),
)

APK = PackageManagerFamily(
    name="apk",
    display_name="Alpine-style (apk)",
    refresh=("apk", "update", REPOS),
    install=("apk", "add", REPOS, PACKAGES),
    query=("apk", "info", "-e", PACKAGE),
    remove=("apk", "del", REPOS, PACKAGES),
    repository_option="--repository",
    not_found_patterns=("no such package", "unable to select packages"),
    permission_patterns=("unable to lock database",),
    network_patterns=("network error", "unable to fetch"),
)

# Shell-driven override commands only get the shared patterns
CUSTOM = PackageManagerFamily(
    name="custom",
    display_name="Custom commands",
    refresh=("sh", "-c"),
    install=("sh", "-c"),
    query=(),
    remove=(),
)

FAMILIES: dict[str, PackageManagerFamily] = {
    family.name: family for family in (APT, DNF, ZYPPER, PACMAN, APK)
}


class DistroAdapter(Protocol):
    """Protocol for normalized package-manager operations.

    CONTRACT:
      Purpose: Translate abstract package operations into one package
               manager's command lines and interpret the outcome as a
               normalized OperationResult.

      Invariants:
        - No method raises for package-manager failures; every failure is
          reported through OperationResult.status
        - Each call runs at most one package-manager process at a time
        - No package state is cached: every call round-trips to the system
    """

    @property
    def name(self) -> str:
        """Get adapter identifier (family name such as 'apt' or 'custom')."""
        ...

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Get the operations this adapter can perform.

        CONTRACT:
          Outputs:
            - capabilities: subset of Capability; operations outside it
              return UNSUPPORTED
          Properties:
            - Stability: constant for the adapter instance
        """
        ...

    def refresh_repositories(self) -> OperationResult:
        """Refresh repository metadata.

        CONTRACT:
          Outputs:
            - SUCCESS when metadata is current
            - NETWORK_FAILURE (possibly timed_out) when mirrors are unreachable
          Properties:
            - Safe to retry on NETWORK_FAILURE
        """
        ...

    def install_packages(self, names: Sequence[str]) -> OperationResult:
        """Install all ``names`` in one package-manager transaction.

        CONTRACT:
          Inputs:
            - names: package names; empty is a no-op SUCCESS
          Outputs:
            - SUCCESS also when some or all packages were already installed
            - NOT_FOUND when a package is unknown to the repositories
          Properties:
            - Idempotent at the package-state level
        """
        ...

    def query_package(self, name: str) -> OperationResult:
        """Check whether ``name`` is installed.

        CONTRACT:
          Outputs:
            - SUCCESS when installed, NOT_FOUND when absent
          Properties:
            - No side effects on the package database
        """
        ...

    def remove_packages(self, names: Sequence[str]) -> OperationResult:
        """Remove all ``names``.

        CONTRACT:
          Inputs:
            - names: package names; empty is a no-op SUCCESS
          Outputs:
            - SUCCESS when the packages are no longer installed
            - NOT_FOUND when the package manager does not know a package
        """
        ...

    def execute(self, operation: PackageOperation) -> OperationResult:
        """Dispatch a PackageOperation to the matching method."""
        ...


def _matches(text: str, patterns: Iterable[str]) -> bool:
    return any(pattern in text for pattern in patterns)


def classify(
    family: PackageManagerFamily, capability: Capability, output: CommandOutput
) -> OperationResult:
    """Map a finished command to a normalized OperationResult.

    CONTRACT:
      Inputs:
        - family: classification table of the package manager that ran
        - capability: which operation produced ``output``
        - output: captured process result
      Outputs:
        - OperationResult carrying the bounded output tails and exit code
      Invariants:
        - Never raises
        - timed_out output always maps to NETWORK_FAILURE with timed_out set
        - A missing executable maps to UNSUPPORTED
      Algorithm:
        1. Timeout, then missing executable
        2. Success exit codes (queries also need the installed marker, a
           refresh must not report degraded metadata), then exit 127 from
           a shell as a missing executable
        3. Family exit-code tables: not-found, permission, network
        4. Output patterns: network (a mirror's 404 is not a missing
           package), then not-found (package operations only), then
           permission
        5. Anything else is FAILURE with the raw exit code
    """

    def result(status: OperationStatus, *, timed_out: bool = False) -> OperationResult:
        return OperationResult(
            status=status,
            raw_exit_code=output.exit_code,
            stdout_tail=output.stdout,
            stderr_tail=output.stderr,
            timed_out=timed_out,
            command=output.argv,
        )

    if output.timed_out:
        return result(OperationStatus.NETWORK_FAILURE, timed_out=True)
    if output.not_executable:
        return result(OperationStatus.UNSUPPORTED)

    code = output.exit_code
    is_query = capability is Capability.QUERY
    text = f"{output.stderr}\n{output.stdout}".lower()

    if code in family.success_exit_codes:
        if (
            is_query
            and family.query_installed_marker is not None
            and family.query_installed_marker not in output.stdout
        ):
            return result(OperationStatus.NOT_FOUND)
        if capability is Capability.REFRESH and _matches(
            text, family.degraded_refresh_patterns
        ):
            return result(OperationStatus.NETWORK_FAILURE)
        return result(OperationStatus.SUCCESS)

    if code == SHELL_COMMAND_NOT_FOUND:
        return result(OperationStatus.UNSUPPORTED)
    if is_query and code in family.query_missing_exit_codes:
        return result(OperationStatus.NOT_FOUND)
    if code in family.not_found_exit_codes:
        return result(OperationStatus.NOT_FOUND)
    if code in family.permission_exit_codes:
        return result(OperationStatus.PERMISSION_DENIED)
    if code in family.network_exit_codes:
        return result(OperationStatus.NETWORK_FAILURE)

    if _matches(text, (*family.network_patterns, *_COMMON_NETWORK)):
        return result(OperationStatus.NETWORK_FAILURE)
    if capability is not Capability.REFRESH and _matches(
        text, (*family.not_found_patterns, *_COMMON_NOT_FOUND)
    ):
        return result(OperationStatus.NOT_FOUND)
    if _matches(text, (*family.permission_patterns, *_COMMON_PERMISSION)):
        return result(OperationStatus.PERMISSION_DENIED)

    return result(OperationStatus.FAILURE)


def expand_template(
    template: Sequence[str],
    *,
    packages: Sequence[str] = (),
    repos: Sequence[str] = (),
    repository_option: str | None = None,
) -> list[str]:
    """Build a concrete argv from a family template."""
    argv: list[str] = []
    for item in template:
        if item == PACKAGES:
            argv.extend(packages)
        elif item == PACKAGE:
            argv.extend(packages[:1])
        elif item == REPOS:
            if repository_option is not None:
                for uri in repos:
                    argv.extend([repository_option, uri])
        else:
            argv.append(item)
    return argv


def _privilege_prefix(privilege_command: str | None) -> list[str]:
    """Elevation prefix, applied only when not already running as root."""
    if not privilege_command or os.geteuid() == 0:
        return []
    return shlex.split(privilege_command)


def _noop_success() -> OperationResult:
    return OperationResult(status=OperationStatus.SUCCESS, raw_exit_code=0)


def _dispatch(adapter: "DistroAdapter", operation: PackageOperation) -> OperationResult:
    capability = required_capability(operation)
    if capability not in adapter.capabilities:
        return OperationResult.unsupported(
            f"{adapter.name} adapter does not support {capability.value}"
        )
    if isinstance(operation, Refresh):
        return adapter.refresh_repositories()
    if isinstance(operation, Install):
        return adapter.install_packages(operation.names)
    if isinstance(operation, Query):
        return adapter.query_package(operation.name)
    if isinstance(operation, Remove):
        return adapter.remove_packages(operation.names)
    return OperationResult.unsupported(f"Unknown operation {operation!r}")


class SystemAdapter:
    """Adapter for a native package manager described by a family record."""

    def __init__(
        self,
        family: PackageManagerFamily,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        repository_sources: Sequence[str] = (),
        privilege_command: str | None = None,
        runner: Runner | None = None,
    ):
        self.family = family
        self.timeout = timeout
        self.repository_sources = tuple(repository_sources)
        self.privilege_command = privilege_command
        self.runner = runner if runner is not None else run_command

        if self.repository_sources and family.repository_option is None:
            logger.warning(
                f"{family.display_name} cannot use per-command repositories; "
                "repository_sources are ignored, configure them on the system"
            )

    @property
    def name(self) -> str:
        return self.family.name

    @property
    def display_name(self) -> str:
        return self.family.display_name

    @property
    def capabilities(self) -> frozenset[Capability]:
        return ALL_CAPABILITIES

    def run_argv(
        self,
        argv: Sequence[str],
        *,
        output_limit: int | None = OUTPUT_TAIL_CHARS,
        elevate: bool = True,
    ) -> CommandOutput:
        """Run an already-expanded argv with the timeout.

        Read-only queries pass ``elevate=False`` to skip the privilege prefix.
        """
        prefix = _privilege_prefix(self.privilege_command) if elevate else []
        full_argv = [*prefix, *argv]
        return self.runner(full_argv, timeout=self.timeout, output_limit=output_limit)

    def _run(
        self,
        capability: Capability,
        template: Sequence[str],
        *,
        packages: Sequence[str] = (),
        repos: Sequence[str] | None = None,
    ) -> OperationResult:
        argv = expand_template(
            template,
            packages=packages,
            repos=self.repository_sources if repos is None else repos,
            repository_option=self.family.repository_option,
        )
        result = classify(self.family, capability, self.run_argv(argv))
        logger.debug(f"{self.name} {capability.value}: {result.summary()}")
        return result

    def refresh_repositories(self) -> OperationResult:
        if not self.repository_sources or self.family.repository_option is None:
            return self._run(Capability.REFRESH, self.family.refresh)

        # Try mirrors in declared order until one is reachable
        result = _noop_success()
        for uri in self.repository_sources:
            result = self._run(Capability.REFRESH, self.family.refresh, repos=[uri])
            if result.status is not OperationStatus.NETWORK_FAILURE:
                return result
            logger.info(f"Mirror {uri} unreachable ({result.summary()})")
        return result

    def install_packages(self, names: Sequence[str]) -> OperationResult:
        if not names:
            return _noop_success()
        return self._run(Capability.INSTALL, self.family.install, packages=names)

    def query_package(self, name: str) -> OperationResult:
        return self._run(Capability.QUERY, self.family.query, packages=[name])

    def remove_packages(self, names: Sequence[str]) -> OperationResult:
        if not names:
            return _noop_success()
        return self._run(Capability.REMOVE, self.family.remove, packages=names)

    def execute(self, operation: PackageOperation) -> OperationResult:
        return _dispatch(self, operation)


class CustomCommandAdapter:
    """Adapter driven by the ``refresh_command``/``install_command`` overrides.

    Both commands run through ``sh -c``; package names are shell-quoted and
    appended to the install command. Query and removal are not available.
    """

    family = CUSTOM

    def __init__(
        self,
        refresh_command: str,
        install_command: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        privilege_command: str | None = None,
        runner: Runner | None = None,
    ):
        self.refresh_command = refresh_command
        self.install_command = install_command
        self.timeout = timeout
        self.privilege_command = privilege_command
        self.runner = runner if runner is not None else run_command

    @property
    def name(self) -> str:
        return CUSTOM.name

    @property
    def display_name(self) -> str:
        return CUSTOM.display_name

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset({Capability.REFRESH, Capability.INSTALL})

    def _run_shell(self, capability: Capability, command: str) -> OperationResult:
        argv = [*_privilege_prefix(self.privilege_command), "sh", "-c", command]
        result = classify(CUSTOM, capability, self.runner(argv, timeout=self.timeout))
        logger.debug(f"custom {capability.value}: {result.summary()}")
        return result

    def refresh_repositories(self) -> OperationResult:
        return self._run_shell(Capability.REFRESH, self.refresh_command)

    def install_packages(self, names: Sequence[str]) -> OperationResult:
        if not names:
            return _noop_success()
        quoted = " ".join(shlex.quote(n) for n in names)
        return self._run_shell(Capability.INSTALL, f"{self.install_command} {quoted}")

    def query_package(self, name: str) -> OperationResult:
        return OperationResult.unsupported("custom adapter cannot query packages")

    def remove_packages(self, names: Sequence[str]) -> OperationResult:
        return OperationResult.unsupported("custom adapter cannot remove packages")

    def execute(self, operation: PackageOperation) -> OperationResult:
        return _dispatch(self, operation)
