"""Shared fixtures: isolated XDG directories and a scripted command runner."""

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from package_assistant.constants import OUTPUT_TAIL_CHARS
from package_assistant.process import CommandOutput


def output(
    argv: Sequence[str] = ("cmd",),
    exit_code: int | None = 0,
    stdout: str = "",
    stderr: str = "",
    *,
    timed_out: bool = False,
    not_executable: bool = False,
) -> CommandOutput:
    """Build a CommandOutput without running anything."""
    return CommandOutput(
        argv=tuple(argv),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        timed_out=timed_out,
        not_executable=not_executable,
    )


Handler = Callable[[tuple[str, ...]], CommandOutput]


class FakeRunner:
    """Stand-in for run_command that records every argv it receives.

    Responses come from a handler function, or from a queue of outputs
    consumed in order (the last one repeats).
    """

    def __init__(
        self,
        handler: Handler | None = None,
        responses: Sequence[CommandOutput] = (),
    ):
        self.handler = handler
        self.responses = list(responses)
        self.calls: list[tuple[str, ...]] = []
        self.timeouts: list[float] = []
        self.output_limits: list[int | None] = []

    def __call__(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        output_limit: int | None = OUTPUT_TAIL_CHARS,
    ) -> CommandOutput:
        argv = tuple(argv)
        self.calls.append(argv)
        self.timeouts.append(timeout)
        self.output_limits.append(output_limit)
        if self.handler is not None:
            return self.handler(argv)
        if len(self.responses) > 1:
            response = self.responses.pop(0)
        elif self.responses:
            response = self.responses[0]
        else:
            response = output(argv)
        return CommandOutput(
            argv=argv,
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
            timed_out=response.timed_out,
            not_executable=response.not_executable,
        )


class SimulatedAptSystem:
    """Minimal emulation of apt-get and dpkg-query on a Debian system."""

    def __init__(
        self,
        available: set[str],
        installed: set[str] | None = None,
        *,
        network_up: bool = True,
    ):
        self.available = set(available)
        self.installed = set(installed or ())
        self.network_up = network_up

    def __call__(self, argv: tuple[str, ...]) -> CommandOutput:
        tool, *args = argv
        if tool == "dpkg-query":
            name = args[-1]
            if name in self.installed:
                return output(argv, 0, "install ok installed")
            return output(
                argv, 1, stderr=f"dpkg-query: no packages found matching {name}"
            )

        command = args[0]
        names = [a for a in args[1:] if not a.startswith("-")]
        if command == "update":
            if not self.network_up:
                # apt-get only warns about unreachable mirrors and exits 0
                return output(
                    argv,
                    0,
                    "Reading package lists... Done",
                    stderr=(
                        "W: Failed to fetch http://deb.debian.org/debian/dists/"
                        "stable/InRelease  Temporary failure resolving "
                        "'deb.debian.org'\n"
                        "W: Some index files failed to download. They have been "
                        "ignored, or old ones used instead."
                    ),
                )
            return output(argv, 0, "Reading package lists... Done")
        if command == "install":
            for name in names:
                if name not in self.available:
                    return output(
                        argv, 100, stderr=f"E: Unable to locate package {name}"
                    )
            self.installed.update(names)
            return output(argv, 0, "Setting up packages")
        if command == "remove":
            for name in names:
                if name not in self.available:
                    return output(
                        argv, 100, stderr=f"E: Unable to locate package {name}"
                    )
            self.installed.difference_update(names)
            return output(argv, 0)
        return output(argv, 1, stderr=f"unknown command {command}")


@pytest.fixture(autouse=True)
def isolated_xdg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG config and data directories into the test's tmp_path."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Provide a FakeRunner that succeeds with empty output."""
    return FakeRunner()
