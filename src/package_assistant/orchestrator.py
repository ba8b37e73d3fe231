"""Repository refresh and dependency installation for ``init``."""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .distro import DistroAdapter
from .operations import OperationResult, OperationStatus

logger = logging.getLogger(__name__)


class InitState(Enum):
    """States of an init run."""

    START = "Start"
    REFRESHING_REPOS = "RefreshingRepos"
    INSTALLING_DEPENDENCIES = "InstallingDependencies"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass
class InitOutcome:
    """Result of one InitOrchestrator run."""

    state: InitState
    refresh_attempts: int = 0
    results: list[OperationResult] = field(default_factory=list)
    failure: OperationResult | None = None
    failed_step: InitState | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is InitState.DONE


class InitOrchestrator:
    """Drives an adapter through refresh then dependency installation.

    Refresh is retried with exponential backoff, but only for network
    failures (timeouts included). Installation runs exactly once with the
    whole dependency set so the package manager resolves them together.
    """

    def __init__(
        self,
        adapter: DistroAdapter,
        dependencies: Sequence[str],
        *,
        refresh_retries: int = 3,
        retry_backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Callable[[InitState], None] | None = None,
    ):
        self.adapter = adapter
        self.dependencies = tuple(dependencies)
        self.refresh_retries = refresh_retries
        self.retry_backoff = retry_backoff
        self.sleep = sleep
        self.on_transition = on_transition
        self.state = InitState.START

    def _transition(self, state: InitState) -> None:
        logger.debug(f"init: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_transition is not None:
            self.on_transition(state)

    def _abort(self, outcome: InitOutcome, result: OperationResult) -> InitOutcome:
        outcome.failure = result
        outcome.failed_step = self.state
        self._transition(InitState.ABORTED)
        outcome.state = self.state
        return outcome

    def _refresh(self, outcome: InitOutcome) -> OperationResult:
        attempt = 0
        while True:
            outcome.refresh_attempts += 1
            result = self.adapter.refresh_repositories()
            outcome.results.append(result)

            if result.status is not OperationStatus.NETWORK_FAILURE:
                return result
            if attempt >= self.refresh_retries:
                return result

            delay = self.retry_backoff * (2**attempt)
            logger.warning(
                f"Repository refresh failed ({result.summary()}), "
                f"retrying in {delay:g}s "
                f"({attempt + 1}/{self.refresh_retries})"
            )
            self.sleep(delay)
            attempt += 1

    def run(self) -> InitOutcome:
        """Run refresh and installation to DONE or ABORTED."""
        outcome = InitOutcome(state=self.state)

        self._transition(InitState.REFRESHING_REPOS)
        refresh = self._refresh(outcome)
        if not refresh.ok:
            return self._abort(outcome, refresh)

        self._transition(InitState.INSTALLING_DEPENDENCIES)
        if self.dependencies:
            install = self.adapter.install_packages(self.dependencies)
            outcome.results.append(install)
            if not install.ok:
                return self._abort(outcome, install)
        else:
            logger.debug("No dependencies configured, skipping installation")

        self._transition(InitState.DONE)
        outcome.state = self.state
        return outcome
