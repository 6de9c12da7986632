"""
Change-scoped build orchestration for multi-service repositories.

Detects which service directories changed between two revisions, then runs
test with a coverage gate, build, and image publish for just those services,
aggregating per-service outcomes into one verdict.
"""

from service_pipeline.change_detection import detect_affected_services
from service_pipeline.config import Settings, load_settings
from service_pipeline.models import (
    ChangeSet,
    PipelineVerdict,
    ServiceOutcome,
    ServiceRegistry,
    ServiceReport,
)
from service_pipeline.orchestrator import BuildOrchestrator
from service_pipeline.tagging import TagPolicy, resolve_tag

__version__ = "0.1.0"

__all__ = [
    "BuildOrchestrator",
    "ChangeSet",
    "PipelineVerdict",
    "ServiceOutcome",
    "ServiceRegistry",
    "ServiceReport",
    "Settings",
    "TagPolicy",
    "detect_affected_services",
    "load_settings",
    "resolve_tag",
]
