"""
External tool collaborators.

Each collaborator is a Protocol so stages can be driven by fakes in tests.
The default implementations render configured command templates and run them
through CommandRunner inside the repository checkout.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog

from service_pipeline.config import Settings
from service_pipeline.errors import (
    BuildError,
    ImageBuildError,
    PublishError,
    RegistryAuthError,
)
from service_pipeline.runner import CommandResult, CommandRunner, render_command

logger = structlog.get_logger(__name__)


@dataclass
class TestRun:
    """What the test runner left behind for one service."""

    __test__ = False

    service: str
    result: CommandResult
    coverage_report: Path
    test_reports: list[Path] = field(default_factory=list)


class TestRunner(Protocol):
    async def run_tests(self, service: str) -> TestRun: ...


class BuildTool(Protocol):
    async def build(self, service: str) -> Path: ...


class ContainerEngine(Protocol):
    async def login(self) -> None: ...

    async def build_image(self, service: str, artifact: Path, image: str, tag: str) -> None: ...

    async def push(self, service: str, image: str, tag: str) -> None: ...


class ReportArchiver(Protocol):
    def archive(self, service: str, paths: list[Path]) -> None: ...


class CommandTestRunner:
    """
    Runs the configured test command.

    The exit status is reported, not raised, so reports of a failed run can
    still be archived.
    """

    __test__ = False

    def __init__(self, settings: Settings, runner: CommandRunner) -> None:
        self._settings = settings
        self._runner = runner

    async def run_tests(self, service: str) -> TestRun:
        args = render_command(self._settings.test_command, service=service)
        result = await self._runner.run(args)

        root = self._runner.cwd
        coverage_report = root / self._settings.coverage_report.format(service=service)
        test_reports = sorted(root.glob(self._settings.test_report_glob.format(service=service)))

        return TestRun(
            service=service,
            result=result,
            coverage_report=coverage_report,
            test_reports=test_reports,
        )


class CommandBuildTool:
    """Runs the configured build command and locates the single artifact."""

    def __init__(self, settings: Settings, runner: CommandRunner) -> None:
        self._settings = settings
        self._runner = runner

    async def build(self, service: str) -> Path:
        args = render_command(self._settings.build_command, service=service)
        result = await self._runner.run(args)
        if not result.ok:
            raise BuildError(service, result.failure_detail())

        pattern = self._settings.artifact_pattern.format(service=service)
        matches = sorted(self._runner.cwd.glob(pattern))
        if not matches:
            raise BuildError(service, f"build reported success but no artifact matches {pattern}")
        if len(matches) > 1:
            names = ", ".join(str(m.relative_to(self._runner.cwd)) for m in matches)
            raise BuildError(service, f"expected one artifact for {pattern}, found: {names}")

        return matches[0]


class CommandContainerEngine:
    """Container engine driven by docker-compatible CLI commands."""

    def __init__(self, settings: Settings, runner: CommandRunner) -> None:
        self._settings = settings
        self._runner = runner

    async def login(self) -> None:
        """
        Open an authenticated registry session.

        The password goes to the command on stdin, never on the command line.
        """
        registry = self._settings.container_registry
        username = self._settings.registry_username
        password = self._settings.registry_password.get_secret_value()
        if not username or not password:
            raise RegistryAuthError(registry, "registry credentials are not configured")

        args = render_command(
            self._settings.registry_login_command, registry=registry, username=username
        )
        result = await self._runner.run(args, input=password)
        if not result.ok:
            raise RegistryAuthError(registry, result.failure_detail().replace(password, "***"))

        logger.info("registry_login_succeeded", registry=registry, username=username)

    async def build_image(self, service: str, artifact: Path, image: str, tag: str) -> None:
        args = render_command(
            self._settings.image_build_command,
            service=service,
            artifact=_relative(artifact, self._runner.cwd),
            image=image,
            tag=tag,
            registry=self._settings.container_registry,
        )
        result = await self._runner.run(args)
        if not result.ok:
            raise ImageBuildError(service, result.failure_detail())

    async def push(self, service: str, image: str, tag: str) -> None:
        args = render_command(
            self._settings.image_push_command,
            image=image,
            tag=tag,
            registry=self._settings.container_registry,
        )
        result = await self._runner.run(args)
        if not result.ok:
            raise PublishError(service, result.failure_detail())


class DirectoryReportArchiver:
    """Copies report files into ``<archive_dir>/<service>/``."""

    def __init__(self, archive_dir: Path) -> None:
        self.archive_dir = archive_dir

    def archive(self, service: str, paths: list[Path]) -> None:
        target = self.archive_dir / service
        for path in paths:
            if not path.is_file():
                continue
            try:
                target.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, target / path.name)
            except OSError as e:
                logger.warning(
                    "report_archive_failed",
                    service=service,
                    path=str(path),
                    error=str(e),
                )


class NullReportArchiver:
    """Archiver used when no archive directory is configured."""

    def archive(self, service: str, paths: list[Path]) -> None:
        logger.debug("report_archive_skipped", service=service, reports=len(paths))


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)
