"""Adapter selection for configured distro identifiers."""

from .distro import (
    APK,
    APT,
    DNF,
    PACMAN,
    ZYPPER,
    CustomCommandAdapter,
    DistroAdapter,
    PackageManagerFamily,
    SystemAdapter,
)
from .settings import ConfigError, ConfigErrorKind, Settings

# Known distro identifiers and the package-manager family each one uses
DISTRO_FAMILIES: dict[str, PackageManagerFamily] = {
    "debian-like": APT,
    "debian": APT,
    "ubuntu": APT,
    "rhel-like": DNF,
    "fedora": DNF,
    "rhel": DNF,
    "centos": DNF,
    "rocky": DNF,
    "almalinux": DNF,
    "suse-like": ZYPPER,
    "opensuse": ZYPPER,
    "opensuse-leap": ZYPPER,
    "opensuse-tumbleweed": ZYPPER,
    "sles": ZYPPER,
    "arch-like": PACMAN,
    "arch": PACMAN,
    "manjaro": PACMAN,
    "endeavouros": PACMAN,
    "alpine-like": APK,
    "alpine": APK,
}


def supported_distro_ids() -> list[str]:
    """Return the known distro identifiers, sorted."""
    return sorted(DISTRO_FAMILIES)


def resolve(settings: Settings) -> DistroAdapter:
    """Select the adapter for a validated distro profile.

    CONTRACT:
      Inputs:
        - settings: validated Settings
      Outputs:
        - SystemAdapter for a registered distro_id; registered ids win even
          when override commands are also present
        - CustomCommandAdapter when distro_id is unregistered but both
          override commands are configured
      Invariants:
        - Raises ConfigError(UNKNOWN_DISTRO) otherwise
        - No mutable state; runs no commands
    """
    family = DISTRO_FAMILIES.get(settings.distro_id)
    if family is not None:
        return SystemAdapter(
            family,
            timeout=settings.timeout,
            repository_sources=settings.repository_sources,
            privilege_command=settings.privilege_command,
        )

    refresh_command = settings.refresh_command_override
    install_command = settings.install_command_override
    if refresh_command is not None and install_command is not None:
        return CustomCommandAdapter(
            refresh_command,
            install_command,
            timeout=settings.timeout,
            privilege_command=settings.privilege_command,
        )

    raise ConfigError(
        ConfigErrorKind.UNKNOWN_DISTRO,
        f"Unsupported distro '{settings.distro_id}'. "
        f"Supported: {', '.join(supported_distro_ids())}, "
        "or set both 'refresh_command' and 'install_command'",
    )
