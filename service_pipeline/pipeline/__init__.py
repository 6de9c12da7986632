"""
Pipeline Infrastructure Package.

Provides the run context, result types, and stage coordination.
"""

from service_pipeline.pipeline.context import RunContext, RunContextBuilder
from service_pipeline.pipeline.coordinator import CoordinatorResult, PipelineCoordinator
from service_pipeline.pipeline.result import ServiceResult, StageResult, StageTiming

__all__ = [
    "CoordinatorResult",
    "PipelineCoordinator",
    "RunContext",
    "RunContextBuilder",
    "ServiceResult",
    "StageResult",
    "StageTiming",
]
