"""
Image Build & Publish Stage.

Logs in to the container registry once, then builds and pushes one image per
built service. A failed login aborts the stage (and the run); a failed build or
push only fails that service and never rolls back sibling publishes.
"""

from pathlib import Path

import structlog

from service_pipeline.collaborators import ContainerEngine
from service_pipeline.errors import ConfigurationError, ImageBuildError
from service_pipeline.models import ServiceOutcome, ServiceReport
from service_pipeline.pipeline.context import RunContext
from service_pipeline.pipeline.result import ServiceResult
from service_pipeline.stages.base import ServiceStage

logger = structlog.get_logger(__name__)


class PublishStage(ServiceStage):
    success_outcome = ServiceOutcome.PUBLISHED
    failure_outcome = ServiceOutcome.PUBLISH_FAILED

    def __init__(self, engine: ContainerEngine) -> None:
        self._engine = engine

    @property
    def name(self) -> str:
        return "publish"

    def is_eligible(self, report: ServiceReport, context: RunContext) -> bool:
        return report.outcome is ServiceOutcome.BUILT

    async def prepare(self, services: list[str], context: RunContext) -> None:
        """Open the registry session; RegistryAuthError propagates."""
        if not context.tag:
            raise ConfigurationError("publish stage requires a resolved image tag")
        await self._engine.login()

    async def execute(
        self, report: ServiceReport, context: RunContext, result: ServiceResult
    ) -> ServiceOutcome:
        service = report.service
        if not report.artifact:
            raise ImageBuildError(service, "no build artifact recorded")

        image = context.settings.image_name(service)
        tag = context.tag or ""

        await self._engine.build_image(service, Path(report.artifact), image, tag)
        await self._engine.push(service, image, tag)

        reference = f"{image}:{tag}"
        result.set("image", reference)
        logger.info("image_published", service=service, image=reference)
        return ServiceOutcome.PUBLISHED
