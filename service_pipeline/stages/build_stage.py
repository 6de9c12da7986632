"""
Build Stage.

Invokes the build tool for services that passed the test stage, plus the
policy exceptions: coverage shortfalls when the gate is advisory, and every
selected service when the run builds all.
"""

from service_pipeline.collaborators import BuildTool
from service_pipeline.models import ServiceOutcome, ServiceReport
from service_pipeline.pipeline.context import RunContext
from service_pipeline.pipeline.result import ServiceResult
from service_pipeline.stages.base import ServiceStage


class BuildStage(ServiceStage):
    success_outcome = ServiceOutcome.BUILT
    failure_outcome = ServiceOutcome.BUILD_FAILED

    def __init__(self, build_tool: BuildTool) -> None:
        self._build_tool = build_tool

    @property
    def name(self) -> str:
        return "build"

    def is_eligible(self, report: ServiceReport, context: RunContext) -> bool:
        if context.build_all:
            return True
        if report.outcome is ServiceOutcome.TESTED_PASSED:
            return True
        return (
            report.outcome is ServiceOutcome.TESTED_FAILED_COVERAGE
            and not context.settings.gate_blocks_build
        )

    async def execute(
        self, report: ServiceReport, context: RunContext, result: ServiceResult
    ) -> ServiceOutcome:
        artifact = await self._build_tool.build(report.service)
        result.set("artifact", str(artifact))
        return ServiceOutcome.BUILT
