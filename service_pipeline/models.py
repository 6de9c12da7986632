"""
Core data model for an orchestration run.

ServiceRegistry and ChangeSet are immutable inputs; ServiceReport records are
owned by the coordinator and updated only between stages; PipelineVerdict is
the final aggregate.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath


class ServiceOutcome(str, Enum):
    """Outcome of the latest stage a service went through."""

    TESTED_PASSED = "tested-passed"
    TESTED_FAILED_COVERAGE = "tested-failed-coverage"
    TESTED_FAILED_ERROR = "tested-failed-error"
    BUILT = "built"
    BUILD_FAILED = "build-failed"
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish-failed"

    @property
    def is_failure(self) -> bool:
        return self in _FAILED_OUTCOMES


_FAILED_OUTCOMES = frozenset(
    {
        ServiceOutcome.TESTED_FAILED_COVERAGE,
        ServiceOutcome.TESTED_FAILED_ERROR,
        ServiceOutcome.BUILD_FAILED,
        ServiceOutcome.PUBLISH_FAILED,
    }
)


@dataclass(frozen=True)
class ServiceRegistry:
    """
    Ordered, duplicate-free sequence of service identifiers.

    Each identifier names a top-level directory of the repository.
    """

    services: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.services:
            raise ValueError("service registry must not be empty")
        if len(set(self.services)) != len(self.services):
            raise ValueError(f"service registry has duplicates: {list(self.services)}")
        for service in self.services:
            if not service or "/" in service:
                raise ValueError(f"invalid service identifier: {service!r}")

    @classmethod
    def of(cls, services: Iterable[str]) -> ServiceRegistry:
        return cls(tuple(services))

    def __iter__(self) -> Iterator[str]:
        return iter(self.services)

    def __len__(self) -> int:
        return len(self.services)

    def __contains__(self, service: object) -> bool:
        return service in self.services


@dataclass(frozen=True)
class ChangeSet:
    """Immutable set of paths changed between two revisions."""

    base_rev: str
    head_rev: str
    paths: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_paths(cls, base_rev: str, head_rev: str, paths: Iterable[str]) -> ChangeSet:
        """Normalise separators and drop blank entries."""
        normalised = {
            PurePosixPath(p.strip().replace("\\", "/")).as_posix()
            for p in paths
            if p and p.strip()
        }
        return cls(base_rev=base_rev, head_rev=head_rev, paths=frozenset(normalised))

    @property
    def is_empty(self) -> bool:
        return not self.paths

    def __len__(self) -> int:
        return len(self.paths)


@dataclass
class TestSummary:
    """Counts read from the test runner's structured reports."""

    __test__ = False

    tests: int = 0
    failures: int = 0
    errors: int = 0
    skipped: int = 0

    @property
    def passed(self) -> int:
        return self.tests - self.failures - self.errors - self.skipped

    def merge(self, other: TestSummary) -> None:
        self.tests += other.tests
        self.failures += other.failures
        self.errors += other.errors
        self.skipped += other.skipped


@dataclass
class ServiceReport:
    """
    Everything the run learned about one service.

    Attributes:
        service: Service identifier
        outcome: Outcome of the latest stage the service went through
        stage: Name of the stage that produced the outcome
        coverage_percent: Truncated instruction coverage, when extracted
        test_summary: Test counts, when test reports were found
        artifact: Build artifact path, once built
        image: Published image reference, once published
        error: Failure detail of the latest failed step
        failures: Every failed step, in stage order
        durations_ms: Per-stage execution time of this service's task
    """

    service: str
    outcome: ServiceOutcome | None = None
    stage: str | None = None
    coverage_percent: int | None = None
    test_summary: TestSummary | None = None
    artifact: str | None = None
    image: str | None = None
    error: str | None = None
    failures: list[StepFailure] = field(default_factory=list)
    durations_ms: dict[str, float] = field(default_factory=dict)

    @property
    def blocking_failures(self) -> list[StepFailure]:
        return [f for f in self.failures if f.blocking]

    @property
    def warnings(self) -> list[StepFailure]:
        return [f for f in self.failures if not f.blocking]


@dataclass(frozen=True)
class StepFailure:
    """
    One failed step of one service.

    Non-blocking failures (an advisory coverage gate) are reported as warnings
    and do not fail the run.
    """

    service: str
    stage: str
    outcome: ServiceOutcome
    error: str | None = None
    blocking: bool = True


@dataclass(frozen=True)
class PipelineVerdict:
    """Aggregate result of a run."""

    success: bool
    summary: str
    failed: tuple[StepFailure, ...] = ()
    warnings: tuple[StepFailure, ...] = ()
    published: tuple[str, ...] = ()
    services: tuple[ServiceReport, ...] = ()
    tag: str | None = None
    details_url: str | None = None
    skipped: bool = False

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
