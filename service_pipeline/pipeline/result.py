"""
Pipeline Result Models.

Standardized result types for per-service steps and whole stages.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from service_pipeline.models import ServiceOutcome


@dataclass
class StageTiming:
    """Timing information for a stage."""

    stage_name: str
    start_time: float
    end_time: float | None = None

    @property
    def duration_ms(self) -> float:
        """Get duration in milliseconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000

    @classmethod
    def start(cls, stage_name: str) -> StageTiming:
        return cls(stage_name=stage_name, start_time=time.perf_counter())

    def stop(self) -> None:
        self.end_time = time.perf_counter()


@dataclass
class ServiceResult:
    """
    Result of one stage for one service.

    Attributes:
        service: Service identifier
        stage_name: Name of the stage that produced this result
        outcome: Outcome recorded for the service (None until the step finishes)
        error: Failure detail if the step failed
        execution_time_ms: Step execution time in milliseconds
        details: Step output (coverage, artifact, image, test summary)
    """

    service: str
    stage_name: str
    outcome: ServiceOutcome | None = None
    error: str | None = None
    execution_time_ms: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome is not None and not self.outcome.is_failure

    def set(self, key: str, value: Any) -> None:
        """Store step output."""
        self.details[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.details.get(key, default)


@dataclass
class StageResult:
    """Result of one stage across every service it ran for."""

    stage_name: str
    results: dict[str, ServiceResult] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    @property
    def succeeded(self) -> list[str]:
        return [s for s, r in self.results.items() if r.success]

    @property
    def failed(self) -> list[str]:
        return [s for s, r in self.results.items() if not r.success]

    @property
    def has_failures(self) -> bool:
        return len(self.failed) > 0
