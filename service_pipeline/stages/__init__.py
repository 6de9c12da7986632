"""
Pipeline Stages Package.

Per-service stages run in this order: test (with coverage gate), build, publish.
"""

from service_pipeline.stages.base import ServiceStage
from service_pipeline.stages.build_stage import BuildStage
from service_pipeline.stages.publish_stage import PublishStage
from service_pipeline.stages.test_stage import TestStage

__all__ = [
    "ServiceStage",
    "BuildStage",
    "PublishStage",
    "TestStage",
]
