"""Bounded, serialized subprocess execution for package-manager commands.

System package managers hold an exclusive lock on their database, so every
invocation goes through ``run_command``, which allows a single child process
at a time for the whole program.
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from .constants import OUTPUT_TAIL_CHARS
from .operations import tail

logger = logging.getLogger(__name__)

_PROCESS_LOCK = threading.Lock()

# Seconds to keep reading a killed child's pipes
DRAIN_TIMEOUT = 2.0

_PIPES_HELD = "output unavailable: a descendant process kept the pipes open"


@dataclass(frozen=True)
class CommandOutput:
    """Captured result of one subprocess invocation.

    ``exit_code`` is None when the process could not be started or was
    killed on timeout. Output streams are already bounded to their tails.
    """

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    not_executable: bool = False


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Kill the child and anything it spawned (e.g. ``sh -c`` pipelines)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


def _drain_killed(proc: subprocess.Popen) -> tuple[str, str]:
    """Collect what a killed child wrote, without waiting on its descendants.

    A daemon spawned by a package script, or the root child of a killed
    ``sudo``, may leave the process group and keep the pipes open. After
    DRAIN_TIMEOUT the pipes are closed and only the child itself is reaped.
    """
    try:
        return proc.communicate(timeout=DRAIN_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.debug(f"Pipes of {proc.args[0]} still held after kill, closing them")
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()
        proc.wait()
        return "", _PIPES_HELD


def run_command(
    argv: Sequence[str],
    *,
    timeout: float,
    output_limit: int | None = OUTPUT_TAIL_CHARS,
) -> CommandOutput:
    """Run a command to completion or until ``timeout`` seconds elapse.

    CONTRACT:
      Inputs:
        - argv: non-empty command line, argv[0] is the executable
        - timeout: seconds before the child is killed
        - output_limit: characters kept from the end of each stream,
          None keeps everything (for callers that parse the output)
      Outputs:
        - CommandOutput with bounded stdout/stderr tails
      Invariants:
        - Never raises for process failures: a missing executable sets
          not_executable, a timeout sets timed_out
        - The child is reaped on every exit path and the call returns
          within timeout + DRAIN_TIMEOUT, even if a descendant that left
          the process group keeps the pipes open
        - At most one child runs at any time, process-wide
    """
    argv_tuple = tuple(argv)
    logger.debug(f"CMD {format_argv(argv_tuple)} (timeout {timeout}s)")

    with _PROCESS_LOCK:
        try:
            proc = subprocess.Popen(
                argv_tuple,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.debug(f"Cannot execute {argv_tuple[0]}: {e}")
            return CommandOutput(
                argv=argv_tuple,
                exit_code=None,
                stdout="",
                stderr=tail(str(e)),
                not_executable=True,
            )

        with proc:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                _kill_process_group(proc)
                stdout, stderr = _drain_killed(proc)
                logger.debug(f"Killed {argv_tuple[0]} after {timeout}s")
                return CommandOutput(
                    argv=argv_tuple,
                    exit_code=None,
                    stdout=tail(stdout, output_limit),
                    stderr=tail(stderr, output_limit),
                    timed_out=True,
                )
            except KeyboardInterrupt:
                # The child runs in its own session and did not see SIGINT;
                # let its transaction finish before propagating
                try:
                    proc.communicate(timeout=timeout)
                except subprocess.TimeoutExpired:
                    _kill_process_group(proc)
                    _drain_killed(proc)
                raise

    if stdout:
        logger.debug(f"STDOUT {tail(stdout).strip()}")
    if stderr:
        logger.debug(f"STDERR {tail(stderr).strip()}")

    return CommandOutput(
        argv=argv_tuple,
        exit_code=proc.returncode,
        stdout=tail(stdout, output_limit),
        stderr=tail(stderr, output_limit),
    )
