"""Built-in functional self-test suite run against a live adapter."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .constants import EXIT_OK, EXIT_OPERATION_FAILED, MISSING_PACKAGE_NAME
from .distro import DistroAdapter
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
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestStep:
    """One operation and the status it must produce."""

    __test__ = False

    operation: PackageOperation
    expected: OperationStatus


@dataclass(frozen=True)
class TestCase:
    """Named, ordered sequence of operations with expected statuses."""

    __test__ = False

    name: str
    steps: tuple[TestStep, ...]
    description: str = ""

    @property
    def requires(self) -> frozenset[Capability]:
        return frozenset(required_capability(step.operation) for step in self.steps)


@dataclass(frozen=True)
class StepOutcome:
    """Expected-vs-actual record for an executed step."""

    step: TestStep
    result: OperationResult

    @property
    def passed(self) -> bool:
        return self.result.status is self.step.expected


@dataclass(frozen=True)
class CaseResult:
    """Outcome of one TestCase."""

    name: str
    passed: bool
    skipped: bool = False
    detail: str = ""
    steps: tuple[StepOutcome, ...] = ()


@dataclass(frozen=True)
class TestReport:
    """Aggregated outcome of a self-test run."""

    __test__ = False

    adapter_name: str
    cases: tuple[CaseResult, ...]
    aborted: bool = False
    abort_reason: str = ""

    @property
    def passed(self) -> bool:
        return not self.aborted and all(case.passed for case in self.cases)

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.passed else EXIT_OPERATION_FAILED

    @property
    def failed_cases(self) -> list[CaseResult]:
        return [case for case in self.cases if not case.passed]


def build_suite(settings: Settings) -> list[TestCase]:
    """Declare the built-in cases for a distro profile.

    Order matters: later cases rely on the package state left behind by
    earlier ones (the test package is installed before it is removed).
    """
    success = OperationStatus.SUCCESS
    not_found = OperationStatus.NOT_FOUND
    deps = settings.dependencies
    package = settings.test_package

    remove_steps = [
        TestStep(Remove((package,)), success),
        TestStep(Query(package), not_found),
    ]
    if package in deps:
        # Put a configured dependency back after removing it
        remove_steps.append(TestStep(Install((package,)), success))

    return [
        TestCase(
            name="refresh-repositories",
            description="repository metadata can be refreshed",
            steps=(TestStep(Refresh(), success),),
        ),
        TestCase(
            name="dependencies-present",
            description="every configured dependency is installed",
            steps=tuple(TestStep(Query(dep), success) for dep in deps),
        ),
        TestCase(
            name="reinstall-dependencies-idempotent",
            description="installing already-present dependencies succeeds",
            steps=(TestStep(Install(deps), success),) if deps else (),
        ),
        TestCase(
            name="install-then-query",
            description=f"'{package}' installs and is then reported present",
            steps=(
                TestStep(Install((package,)), success),
                TestStep(Query(package), success),
            ),
        ),
        TestCase(
            name="remove-then-query",
            description=f"'{package}' is removed and then reported absent",
            steps=tuple(remove_steps),
        ),
        TestCase(
            name="query-missing-package",
            description="querying an unknown package reports NotFound",
            steps=(TestStep(Query(MISSING_PACKAGE_NAME), not_found),),
        ),
        TestCase(
            name="install-missing-package",
            description="installing an unknown package reports NotFound",
            steps=(TestStep(Install((MISSING_PACKAGE_NAME,)), not_found),),
        ),
    ]


class TestRunner:
    """Runs TestCases in declaration order against one adapter."""

    __test__ = False

    def __init__(
        self,
        adapter: DistroAdapter,
        cases: list[TestCase],
        *,
        on_case: Callable[[CaseResult], None] | None = None,
    ):
        self.adapter = adapter
        self.cases = cases
        self.on_case = on_case

    def _run_case(self, case: TestCase) -> CaseResult:
        if not case.steps:
            return CaseResult(
                name=case.name, passed=True, skipped=True, detail="nothing to check"
            )

        missing = case.requires - self.adapter.capabilities
        if missing:
            names = ", ".join(sorted(c.value for c in missing))
            return CaseResult(
                name=case.name,
                passed=True,
                skipped=True,
                detail=f"{self.adapter.name} adapter lacks: {names}",
            )

        outcomes: list[StepOutcome] = []
        for step in case.steps:
            outcome = StepOutcome(step=step, result=self.adapter.execute(step.operation))
            outcomes.append(outcome)
            if not outcome.passed:
                detail = (
                    f"{step.operation.describe()}: expected {step.expected.value}, "
                    f"got {outcome.result.summary()}"
                )
                return CaseResult(
                    name=case.name, passed=False, detail=detail, steps=tuple(outcomes)
                )

        return CaseResult(name=case.name, passed=True, steps=tuple(outcomes))

    def run(self) -> TestReport:
        """Execute every case and build the report."""
        results: list[CaseResult] = []
        for case in self.cases:
            logger.debug(f"Running self-test case '{case.name}'")
            result = self._run_case(case)
            results.append(result)
            if self.on_case is not None:
                self.on_case(result)
        return TestReport(adapter_name=self.adapter.name, cases=tuple(results))


def aborted_report(adapter_name: str, reason: str) -> TestReport:
    """Report for a run that could not start, e.g. a failed init precondition."""
    return TestReport(
        adapter_name=adapter_name, cases=(), aborted=True, abort_reason=reason
    )
