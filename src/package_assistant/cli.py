"""Main CLI entry point for package-assistant."""

import logging
import signal
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .changelog import collect_changelogs, supports_changelogs
from .constants import (
    EXIT_CONFIG_ERROR,
    EXIT_OPERATION_FAILED,
    PROGRAM_NAME,
)
from .distro import DistroAdapter
from .operations import OperationResult
from .orchestrator import InitOrchestrator, InitOutcome, InitState
from .registry import resolve
from .selftest import CaseResult, TestRunner, aborted_report, build_suite
from .settings import (
    ConfigError,
    ConfigErrorKind,
    Settings,
    install_settings,
    installed_settings_path,
    load_settings,
)
from .state import InstallState, StateError, load_state, record_init
from .updates import list_updates

logger = logging.getLogger(__name__)

_CONFIG_OPTION_HELP = "Settings file (TOML or YAML)"


def _sigint_handler(signum: int, frame: object) -> None:
    """Handle SIGINT (CTRL+C) gracefully.

    The running package manager lives in its own session and is not
    interrupted; run_command lets it finish before the KeyboardInterrupt
    reaches the command.
    """
    click.echo(
        "\nInterrupted. Waiting for the running package manager to exit...",
        err=True,
    )
    raise KeyboardInterrupt


def _fail_config(error: ConfigError) -> NoReturn:
    click.echo(f"Configuration error: {error}", err=True)
    raise SystemExit(EXIT_CONFIG_ERROR) from None


def _load(config_path: Path) -> tuple[Settings, DistroAdapter]:
    """Load settings and resolve the adapter before anything runs."""
    try:
        settings = load_settings(config_path)
        return settings, resolve(settings)
    except ConfigError as e:
        _fail_config(e)


def _echo_result_diagnostics(result: OperationResult) -> None:
    """Print the distinguishing status and bounded output tails."""
    click.echo(f"  Status: {result.summary()}", err=True)
    if result.command:
        click.echo(f"  Command: {' '.join(result.command)}", err=True)
    if result.stderr_tail.strip():
        click.echo("  stderr (tail):", err=True)
        click.echo(_indent(result.stderr_tail), err=True)
    if result.stdout_tail.strip():
        click.echo("  stdout (tail):", err=True)
        click.echo(_indent(result.stdout_tail), err=True)


def _indent(text: str) -> str:
    return "\n".join(f"    {line}" for line in text.strip().splitlines())


def _run_init(settings: Settings, adapter: DistroAdapter) -> InitOutcome:
    def announce(state: InitState) -> None:
        if state is InitState.REFRESHING_REPOS:
            click.echo("Refreshing repositories...")
        elif state is InitState.INSTALLING_DEPENDENCIES and settings.dependencies:
            click.echo(f"Installing dependencies: {', '.join(settings.dependencies)}")

    orchestrator = InitOrchestrator(
        adapter,
        settings.dependencies,
        refresh_retries=settings.refresh_retries,
        retry_backoff=settings.retry_backoff,
        on_transition=announce,
    )
    outcome = orchestrator.run()

    if not outcome.succeeded and outcome.failure is not None:
        step = outcome.failed_step.value if outcome.failed_step else "init"
        click.echo(f"Init aborted during {step}.", err=True)
        if outcome.refresh_attempts > 1:
            click.echo(
                f"  Repository refresh attempted {outcome.refresh_attempts} times.",
                err=True,
            )
        _echo_result_diagnostics(outcome.failure)
    return outcome


def _record(settings: Settings) -> None:
    try:
        record_init(settings.distro_id, settings.dependencies)
    except StateError as e:
        click.echo(f"Warning: {e}", err=True)


def _load_state() -> InstallState:
    try:
        return load_state()
    except StateError as e:
        logger.warning(f"{e}; treating init as not run")
        return InstallState()


def _echo_case(result: CaseResult) -> None:
    if result.skipped:
        click.echo(f"  SKIP {result.name} ({result.detail})")
    elif result.passed:
        click.echo(f"  PASS {result.name}")
    else:
        click.echo(f"  FAIL {result.name}: {result.detail}")
        if result.steps:
            _echo_result_diagnostics(result.steps[-1].result)


@click.group()
@click.version_option(version=__version__, prog_name=PROGRAM_NAME)
@click.option("--debug", is_flag=True, help="Log every package-manager command")
def main(debug: bool = False) -> None:
    """package-assistant - one package-management interface for every distro."""
    signal.signal(signal.SIGINT, _sigint_handler)

    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="[DEBUG] %(name)s: %(message)s",
        )


@main.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help=_CONFIG_OPTION_HELP,
)
def init(config_path: Path) -> None:
    """Install settings, refresh repositories and install dependencies."""
    settings, adapter = _load(config_path)

    try:
        _, installed_path = install_settings(config_path)
    except ConfigError as e:
        _fail_config(e)
    except OSError as e:
        click.echo(f"Cannot install settings: {e}", err=True)
        raise SystemExit(EXIT_OPERATION_FAILED) from None
    click.echo(f"Wrote configuration to {installed_path}")

    try:
        outcome = _run_init(settings, adapter)
    except KeyboardInterrupt:
        click.echo("\nInit cancelled.", err=True)
        raise SystemExit(130) from None

    if not outcome.succeeded:
        raise SystemExit(EXIT_OPERATION_FAILED)

    _record(settings)
    click.echo(f"Init complete ({adapter.name}).")


@main.command("test")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help=f"{_CONFIG_OPTION_HELP}; defaults to the one installed by init",
)
def selftest(config_path: Path | None) -> None:
    """Run the built-in self-test suite against the installed configuration."""
    if config_path is None:
        config_path = installed_settings_path()
        if config_path is None:
            click.echo(
                f"No installed settings found. Run '{PROGRAM_NAME} init -c <path>' "
                "first or pass --config.",
                err=True,
            )
            raise SystemExit(EXIT_CONFIG_ERROR)

    settings, adapter = _load(config_path)

    try:
        state = _load_state()
        if not state.matches(settings.distro_id, settings.dependencies):
            click.echo("No completed init recorded for this profile, running init first.")
            outcome = _run_init(settings, adapter)
            if not outcome.succeeded:
                report = aborted_report(adapter.name, "init precondition failed")
                click.echo(f"Self-test aborted: {report.abort_reason}", err=True)
                raise SystemExit(report.exit_code)
            _record(settings)

        click.echo(f"Running self-tests with the {adapter.name} adapter...")
        runner = TestRunner(adapter, build_suite(settings), on_case=_echo_case)
        report = runner.run()
    except KeyboardInterrupt:
        click.echo("\nSelf-test cancelled.", err=True)
        raise SystemExit(130) from None

    ran = [case for case in report.cases if not case.skipped]
    passed = [case for case in ran if case.passed]
    skipped = len(report.cases) - len(ran)
    click.echo(f"\n{len(passed)}/{len(ran)} cases passed, {skipped} skipped.")

    if not report.passed:
        click.echo(
            f"Failed: {', '.join(case.name for case in report.failed_cases)}",
            err=True,
        )
        raise SystemExit(report.exit_code)


@main.command("check-updates")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help=f"{_CONFIG_OPTION_HELP}; defaults to the one installed by init",
)
def check_updates(config_path: Path | None) -> None:
    """List installed packages that have updates available."""
    config_path = config_path or installed_settings_path()
    if config_path is None:
        click.echo(
            f"No installed settings found. Run '{PROGRAM_NAME} init -c <path>' first.",
            err=True,
        )
        raise SystemExit(EXIT_CONFIG_ERROR)

    _, adapter = _load(config_path)
    listing = list_updates(adapter)

    if not listing.result.ok:
        click.echo("Could not check for updates.", err=True)
        _echo_result_diagnostics(listing.result)
        raise SystemExit(EXIT_OPERATION_FAILED)

    if not listing.updates:
        click.echo("All packages are up to date.")
        return

    click.echo(f"{len(listing.updates)} update(s) available:")
    for update in listing.updates:
        click.echo(f"  {update}")


@main.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help=f"{_CONFIG_OPTION_HELP}; defaults to the one installed by init",
)
@click.option(
    "-q",
    "--query",
    default=None,
    help="Only packages whose file name starts with this",
)
def changelog(config_path: Path | None, query: str | None) -> None:
    """Show changelog entries of cached packages newer than the installed ones."""
    config_path = config_path or installed_settings_path()
    if config_path is None:
        click.echo(
            f"No installed settings found. Run '{PROGRAM_NAME} init -c <path>' first.",
            err=True,
        )
        raise SystemExit(EXIT_CONFIG_ERROR)

    settings, adapter = _load(config_path)
    if supports_changelogs(adapter) and settings.cached_package_path is None:
        _fail_config(
            ConfigError(
                ConfigErrorKind.MISSING_FIELD,
                "'cached_package_path' must be configured to read changelogs",
            )
        )

    listing = collect_changelogs(adapter, settings.cached_package_path or Path(), query)

    if not listing.result.ok:
        click.echo("Could not read changelogs.", err=True)
        _echo_result_diagnostics(listing.result)
        raise SystemExit(EXIT_OPERATION_FAILED)

    if not listing.changelogs:
        click.echo("No new changelog entries found.")
        return

    click.echo("\n\n".join(str(entry) for entry in listing.changelogs))


if __name__ == "__main__":
    main()
