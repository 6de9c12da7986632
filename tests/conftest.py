"""
Pytest configuration and fixtures.

Fake collaborators live in tests/fakes.py; fixtures here wire them into
settings and orchestrators for the unit and integration suites.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from service_pipeline.config import Settings
from service_pipeline.orchestrator import BuildOrchestrator
from tests.fakes import (
    FakeBuildTool,
    FakeContainerEngine,
    FakeSourceControl,
    FakeTestRunner,
    RecordingReporter,
)


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    """Undo logging configuration done by CLI tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        registry=["orders", "billing", "gateway"],
        image_prefix="registry.example.com/shop",
        max_concurrent_services=4,
    )


@pytest.fixture
def source_control() -> FakeSourceControl:
    return FakeSourceControl(paths=["orders/src/main/App.java", "billing/pom.xml"])


@pytest.fixture
def test_runner(tmp_path: Path) -> FakeTestRunner:
    return FakeTestRunner(tmp_path)


@pytest.fixture
def build_tool(tmp_path: Path) -> FakeBuildTool:
    return FakeBuildTool(tmp_path)


@pytest.fixture
def container_engine() -> FakeContainerEngine:
    return FakeContainerEngine()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def make_orchestrator(source_control, test_runner, build_tool, container_engine, reporter):
    """Factory building an orchestrator over the fake collaborators."""

    def _make(settings: Settings, **overrides) -> BuildOrchestrator:
        parts = {
            "source_control": source_control,
            "test_runner": test_runner,
            "build_tool": build_tool,
            "container_engine": container_engine,
            "reporters": [reporter],
        }
        parts.update(overrides)
        return BuildOrchestrator(settings=settings, **parts)

    return _make
