"""
Pipeline Coordinator.

Runs stages in order with a barrier between them, derives each stage's
eligible services from the reports left by the previous barrier, and turns the
final reports into a PipelineVerdict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from service_pipeline.models import (
    PipelineVerdict,
    ServiceOutcome,
    ServiceReport,
    StepFailure,
)
from service_pipeline.pipeline.context import RunContext
from service_pipeline.pipeline.result import StageResult

if TYPE_CHECKING:
    from service_pipeline.stages.base import ServiceStage

logger = structlog.get_logger(__name__)


@dataclass
class CoordinatorResult:
    """Result from full pipeline execution."""

    verdict: PipelineVerdict
    reports: dict[str, ServiceReport] = field(default_factory=dict)
    stage_results: dict[str, StageResult] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.verdict.success

    def get_stage_times(self) -> dict[str, float]:
        """Get execution times per stage."""
        return {name: result.execution_time_ms for name, result in self.stage_results.items()}


class PipelineCoordinator:
    """
    Coordinates stage execution for the services of one run.

    Reports are only written here, between stages; per-service tasks never
    share mutable state.

    Example:
        >>> coordinator = PipelineCoordinator([
        ...     TestStage(test_runner, archiver),
        ...     BuildStage(build_tool),
        ...     PublishStage(engine),
        ... ])
        >>> result = await coordinator.run(context)
        >>> if not result.success:
        ...     print(result.verdict.summary)
    """

    def __init__(self, stages: list[ServiceStage] | None = None) -> None:
        """
        Initialize coordinator with stages.

        Args:
            stages: Ordered list of stages to execute
        """
        self._stages: list[ServiceStage] = stages or []

    def add_stage(self, stage: ServiceStage) -> None:
        """Add a stage to the pipeline."""
        self._stages.append(stage)

    def get_stages(self) -> list[ServiceStage]:
        """Get list of configured stages."""
        return self._stages.copy()

    async def run(self, context: RunContext) -> CoordinatorResult:
        """
        Execute every stage for the run's services.

        Service failures never stop the pipeline: a failed service simply is not
        eligible for later stages. Run-level errors raised by a stage propagate.
        """
        logger.info(
            "pipeline_coordinator_start",
            stages=[stage.name for stage in self._stages],
            services=list(context.services),
            **context.log_fields(),
        )

        reports = {service: ServiceReport(service=service) for service in context.services}
        stage_results: dict[str, StageResult] = {}

        for stage in self._stages:
            eligible = {
                service: report
                for service, report in reports.items()
                if stage.is_eligible(report, context)
            }
            stage_result = await stage.run(eligible, context)
            stage_results[stage.name] = stage_result
            self._apply(stage_result, reports, context)

        terminal = self._stages[-1].success_outcome if self._stages else None
        verdict = self.build_verdict(context, reports, terminal)

        logger.info(
            "pipeline_coordinator_complete",
            success=verdict.success,
            failed=[f.service for f in verdict.failed],
            published=list(verdict.published),
            stage_times_ms={name: round(r.execution_time_ms, 2) for name, r in stage_results.items()},
            correlation_id=str(context.correlation_id),
        )

        return CoordinatorResult(verdict=verdict, reports=reports, stage_results=stage_results)

    def _apply(
        self,
        stage_result: StageResult,
        reports: dict[str, ServiceReport],
        context: RunContext,
    ) -> None:
        """Fold one stage's results into the service reports (after the barrier)."""
        for service, result in stage_result.results.items():
            report = reports[service]
            report.outcome = result.outcome
            report.stage = stage_result.stage_name
            report.durations_ms[stage_result.stage_name] = result.execution_time_ms

            if "coverage_percent" in result.details:
                report.coverage_percent = result.details["coverage_percent"]
            if "test_summary" in result.details:
                report.test_summary = result.details["test_summary"]
            if "artifact" in result.details:
                report.artifact = result.details["artifact"]
            if "image" in result.details:
                report.image = result.details["image"]

            if result.outcome is not None and result.outcome.is_failure:
                report.error = result.error
                report.failures.append(
                    StepFailure(
                        service=service,
                        stage=stage_result.stage_name,
                        outcome=result.outcome,
                        error=result.error,
                        blocking=self._is_blocking(result.outcome, context),
                    )
                )

    @staticmethod
    def _is_blocking(outcome: ServiceOutcome, context: RunContext) -> bool:
        if outcome is ServiceOutcome.TESTED_FAILED_COVERAGE:
            return context.settings.gate_blocks_build
        return True

    @staticmethod
    def build_verdict(
        context: RunContext,
        reports: dict[str, ServiceReport],
        terminal: ServiceOutcome | None,
    ) -> PipelineVerdict:
        """
        Aggregate service reports into the run verdict.

        A run succeeds when no service has a blocking failure and every service
        reached ``terminal``, the success outcome of the last configured stage.
        """
        failed: list[StepFailure] = []
        warnings: list[StepFailure] = []
        for report in reports.values():
            failed.extend(report.blocking_failures)
            warnings.extend(report.warnings)

        incomplete = [
            r.service
            for r in reports.values()
            if terminal is not None and r.outcome is not terminal and not r.blocking_failures
        ]
        published = tuple(r.image for r in reports.values() if r.image)
        success = not failed and not incomplete

        return PipelineVerdict(
            success=success,
            summary=summarize(len(reports), failed, warnings, published, context.tag),
            failed=tuple(failed),
            warnings=tuple(warnings),
            published=published,
            services=tuple(reports.values()),
            tag=context.tag,
            details_url=context.settings.details_url,
        )


def summarize(
    service_count: int,
    failed: list[StepFailure],
    warnings: list[StepFailure],
    published: tuple[str, ...],
    tag: str | None,
) -> str:
    """One-line human readable run summary."""
    parts = [f"{service_count} service{'s' if service_count != 1 else ''}"]
    if published:
        parts.append(f"{len(published)} published as {tag}")
    if failed:
        failures = ", ".join(f"{f.service} ({f.stage})" for f in failed)
        parts.append(f"failed: {failures}")
    if warnings:
        advisories = ", ".join(f"{w.service} ({w.stage})" for w in warnings)
        parts.append(f"warnings: {advisories}")
    if not failed:
        parts.append("all required stages passed")
    return "; ".join(parts)
