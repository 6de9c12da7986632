"""
Service Stage Base Class.

A stage runs one step for every eligible service concurrently. Each service's
step runs in its own task with its own error boundary; the stage returns only
when every task has finished (the stage barrier).
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping

import structlog

from service_pipeline.errors import OrchestratorError, ServiceStepError
from service_pipeline.models import ServiceOutcome, ServiceReport
from service_pipeline.pipeline.context import RunContext
from service_pipeline.pipeline.result import ServiceResult, StageResult, StageTiming

logger = structlog.get_logger(__name__)


class ServiceStage(ABC):
    """
    Abstract base class for per-service stages.

    Provides:
    - Fan-out of one task per eligible service, bounded by max_concurrent_services
    - Per-service timing, structured logging and error capture
    - A prepare() hook for stage-wide preconditions (e.g. registry login)

    Subclasses must implement:
    - name property: Unique stage identifier
    - success_outcome / failure_outcome: Outcomes the step records
    - is_eligible(): Whether a service takes part in this stage
    - execute(): The step for one service

    Example:
        >>> class LintStage(ServiceStage):
        ...     success_outcome = ServiceOutcome.TESTED_PASSED
        ...     failure_outcome = ServiceOutcome.TESTED_FAILED_ERROR
        ...
        ...     @property
        ...     def name(self) -> str:
        ...         return "lint"
        ...
        ...     def is_eligible(self, report, context) -> bool:
        ...         return report.outcome is None
        ...
        ...     async def execute(self, report, context, result) -> ServiceOutcome:
        ...         await run_linter(report.service)
        ...         return ServiceOutcome.TESTED_PASSED
    """

    success_outcome: ServiceOutcome
    failure_outcome: ServiceOutcome

    @property
    @abstractmethod
    def name(self) -> str:
        """Stage name (e.g. "test", "build", "publish")."""

    @abstractmethod
    def is_eligible(self, report: ServiceReport, context: RunContext) -> bool:
        """
        Decide whether a service runs in this stage.

        Called by the coordinator after the previous stage's barrier.
        """

    @abstractmethod
    async def execute(
        self, report: ServiceReport, context: RunContext, result: ServiceResult
    ) -> ServiceOutcome:
        """
        Run the step for one service.

        Store step output on ``result`` and return the success outcome. Raise
        a ServiceStepError to record a failure; anything stored on ``result``
        before raising is kept.

        Args:
            report: The service's report as of the previous barrier (read only)
            context: Run context
            result: Result being filled in for this service
        """

    def outcome_for_error(self, error: ServiceStepError) -> ServiceOutcome:
        """Outcome recorded for a step failure."""
        return self.failure_outcome

    async def prepare(self, services: list[str], context: RunContext) -> None:
        """
        Stage-wide precondition, run once before fan-out.

        Raising an OrchestratorError here aborts the whole run.
        """

    async def run_service(self, report: ServiceReport, context: RunContext) -> ServiceResult:
        """
        Run the step for one service inside its error boundary.

        Service-level failures and unexpected exceptions become the service's
        outcome. Run-level OrchestratorErrors and cancellation propagate.
        """
        log = logger.bind(stage=self.name, service=report.service, **context.log_fields())
        result = ServiceResult(service=report.service, stage_name=self.name)
        timing = StageTiming.start(self.name)

        log.debug("service_step_start")
        try:
            result.outcome = await self.execute(report, context, result)
        except ServiceStepError as e:
            result.outcome = self.outcome_for_error(e)
            result.error = e.detail
            log.warning(
                "service_step_failed",
                outcome=result.outcome.value,
                error=e.detail,
                error_type=type(e).__name__,
            )
        except OrchestratorError:
            raise
        except Exception as e:
            result.outcome = self.failure_outcome
            result.error = f"{type(e).__name__}: {e}"
            log.error(
                "service_step_error",
                outcome=result.outcome.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
        finally:
            timing.stop()
            result.execution_time_ms = timing.duration_ms

        if result.success:
            log.info(
                "service_step_complete",
                outcome=result.outcome.value,
                execution_time_ms=round(result.execution_time_ms, 2),
            )
        return result

    async def run(
        self, reports: Mapping[str, ServiceReport], context: RunContext
    ) -> StageResult:
        """
        Run the stage for every service in ``reports`` and wait for all of them.

        Args:
            reports: Eligible services' reports, in run order
            context: Run context

        Returns:
            StageResult with one ServiceResult per service, in input order
        """
        services = list(reports)
        stage_result = StageResult(stage_name=self.name)
        if not services:
            logger.info("stage_skipped", stage=self.name, reason="no eligible services")
            return stage_result

        logger.info(
            "stage_start",
            stage=self.name,
            services=services,
            **context.log_fields(),
        )
        timing = StageTiming.start(self.name)

        await self.prepare(services, context)

        semaphore = asyncio.Semaphore(context.settings.max_concurrent_services)

        async def run_with_semaphore(report: ServiceReport) -> ServiceResult:
            async with semaphore:
                return await self.run_service(report, context)

        results = await asyncio.gather(*(run_with_semaphore(reports[s]) for s in services))

        timing.stop()
        stage_result.execution_time_ms = timing.duration_ms
        for result in results:
            stage_result.results[result.service] = result

        logger.info(
            "stage_complete",
            stage=self.name,
            succeeded=stage_result.succeeded,
            failed=stage_result.failed,
            execution_time_ms=round(stage_result.execution_time_ms, 2),
            correlation_id=str(context.correlation_id),
        )
        return stage_result
