"""
Change-Scoped Build Orchestrator.

Resolves the run (branch, tag policy, changed paths, affected services),
builds an immutable RunContext and hands it to the PipelineCoordinator.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import uuid4

import structlog

from service_pipeline.change_detection import detect_affected_services
from service_pipeline.collaborators import (
    BuildTool,
    CommandBuildTool,
    CommandContainerEngine,
    CommandTestRunner,
    ContainerEngine,
    DirectoryReportArchiver,
    NullReportArchiver,
    ReportArchiver,
    TestRunner,
)
from service_pipeline.config import Settings
from service_pipeline.errors import (
    BranchRunRejected,
    ChangeDetectionError,
    ConfigurationError,
    NoAffectedServices,
    OrchestratorError,
)
from service_pipeline.models import ChangeSet, PipelineVerdict, ServiceRegistry
from service_pipeline.pipeline.context import RunContext, RunContextBuilder
from service_pipeline.pipeline.coordinator import CoordinatorResult, PipelineCoordinator
from service_pipeline.reporting import (
    ConsoleStatusReporter,
    StatusReporter,
    WebhookStatusReporter,
    report_status,
)
from service_pipeline.runner import CommandRunner
from service_pipeline.stages import BuildStage, PublishStage, ServiceStage, TestStage
from service_pipeline.tagging import TagPolicy, resolve_tag
from service_pipeline.vcs import GitClient, SourceControl

logger = structlog.get_logger(__name__)


class BuildOrchestrator:
    """
    Drives one change-scoped run.

    Example:
        >>> orchestrator = BuildOrchestrator.from_settings(settings)
        >>> verdict = await orchestrator.run("origin/main", "HEAD")
        >>> sys.exit(verdict.exit_code)
    """

    def __init__(
        self,
        settings: Settings,
        source_control: SourceControl,
        test_runner: TestRunner,
        build_tool: BuildTool,
        container_engine: ContainerEngine,
        archiver: ReportArchiver | None = None,
        reporters: Sequence[StatusReporter] = (),
    ) -> None:
        self.settings = settings
        self._source_control = source_control
        self._test_runner = test_runner
        self._build_tool = build_tool
        self._container_engine = container_engine
        self._archiver = archiver or NullReportArchiver()
        self._reporters = list(reporters)

    @classmethod
    def from_settings(
        cls, settings: Settings, reporters: Sequence[StatusReporter] | None = None
    ) -> BuildOrchestrator:
        """Wire the default subprocess-backed collaborators."""
        runner = CommandRunner(
            cwd=settings.repo_path,
            timeout_seconds=settings.command_timeout_seconds,
        )
        archiver: ReportArchiver = (
            DirectoryReportArchiver(settings.archive_dir)
            if settings.archive_dir is not None
            else NullReportArchiver()
        )
        if reporters is None:
            reporters = [ConsoleStatusReporter()]
            if settings.status_webhook_url:
                token = settings.status_token.get_secret_value() if settings.status_token else None
                reporters.append(
                    WebhookStatusReporter(
                        settings.status_webhook_url,
                        context=settings.status_context,
                        token=token,
                    )
                )

        return cls(
            settings=settings,
            source_control=GitClient(runner),
            test_runner=CommandTestRunner(settings, runner),
            build_tool=CommandBuildTool(settings, runner),
            container_engine=CommandContainerEngine(settings, runner),
            archiver=archiver,
            reporters=reporters,
        )

    def build_stages(self) -> list[ServiceStage]:
        stages: list[ServiceStage] = [
            TestStage(self._test_runner, self._archiver),
            BuildStage(self._build_tool),
        ]
        if self.settings.publish:
            stages.append(PublishStage(self._container_engine))
        return stages

    async def run(self, base_rev: str, head_rev: str) -> PipelineVerdict:
        """
        Run the pipeline for the changes between two revisions.

        Returns:
            The run verdict (already sent to the status reporters)

        Raises:
            OrchestratorError: Run-level failure (reported, then re-raised)
        """
        try:
            context = await self.resolve_context(base_rev, head_rev)
        except NoAffectedServices as e:
            if self.settings.no_changes == "succeed":
                verdict = PipelineVerdict(
                    success=True,
                    summary=f"no service changed between {e.base_rev} and {e.head_rev}",
                    details_url=self.settings.details_url,
                    skipped=True,
                )
                logger.info("pipeline_skipped", reason="no affected services")
                await report_status(self._reporters, verdict)
                return verdict
            await self._report_abort(e)
            raise
        except OrchestratorError as e:
            await self._report_abort(e)
            raise

        try:
            result = await self.execute(context)
        except OrchestratorError as e:
            await self._report_abort(e)
            raise

        await report_status(self._reporters, result.verdict)
        return result.verdict

    async def execute(self, context: RunContext) -> CoordinatorResult:
        coordinator = PipelineCoordinator(self.build_stages())
        return await coordinator.run(context)

    async def resolve_context(self, base_rev: str, head_rev: str) -> RunContext:
        """
        Work out what this run covers.

        Raises:
            ConfigurationError: If the registry is unusable
            BranchRunRejected: If branch runs are rejected by policy
            ChangeDetectionError: If revision information cannot be read
            NoAffectedServices: If nothing relevant changed and the run does not build all
        """
        settings = self.settings
        try:
            registry = ServiceRegistry.of(settings.registry)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        branch = settings.branch or await self._source_control.current_branch()
        if settings.tag_policy is not None:
            policy = TagPolicy(settings.tag_policy)
        else:
            policy = TagPolicy.for_branch(branch, settings.main_branch)

        if policy is TagPolicy.BRANCH and settings.reject_branch_runs:
            raise BranchRunRejected(branch)

        paths = await self._source_control.changed_paths(base_rev, head_rev)
        change_set = ChangeSet.from_paths(base_rev, head_rev, paths)
        affected = detect_affected_services(registry.services, change_set.paths)

        build_all = policy is TagPolicy.MAIN and settings.build_all_on_main
        if build_all or (policy is TagPolicy.BRANCH and settings.all_services_on_branch):
            services = registry.services
        elif affected is None:
            raise NoAffectedServices(base_rev, head_rev)
        else:
            services = affected

        tag = None
        if settings.publish:
            short = await self._source_control.short_revision(head_rev)
            tags = (
                await self._source_control.tags_containing(head_rev)
                if policy is TagPolicy.MAIN
                else []
            )
            try:
                tag = resolve_tag(policy, short, tags)
            except ValueError as e:
                raise ChangeDetectionError(f"cannot resolve image tag: {e}") from e

        context = (
            RunContextBuilder()
            .with_correlation_id(uuid4())
            .with_registry(registry)
            .with_change_set(change_set)
            .with_services(services)
            .with_branch(branch, policy)
            .with_tag(tag)
            .with_build_all(build_all)
            .with_settings(settings)
            .build()
        )

        logger.info(
            "run_resolved",
            base_rev=base_rev,
            changed_paths=len(change_set),
            affected=list(affected or ()),
            services=list(context.services),
            tag_policy=policy.value,
            tag=tag,
            build_all=build_all,
            **context.log_fields(),
        )
        return context

    async def _report_abort(self, error: OrchestratorError) -> None:
        logger.error("pipeline_aborted", error=str(error), error_type=type(error).__name__)
        verdict = PipelineVerdict(
            success=False,
            summary=f"run aborted: {error}",
            details_url=self.settings.details_url,
        )
        await report_status(self._reporters, verdict)
