"""
`orchestrate` command.

Example:
    orchestrate --registry=orders,billing,gateway --base-rev=origin/main \\
        --head-rev=HEAD --tag-policy=branch --coverage-threshold=70

Exit codes: 0 full success, 1 a service failed a stage, 2 run aborted,
130 cancelled.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Any

import click
import structlog
from pydantic import ValidationError

from service_pipeline.config import Settings, load_settings
from service_pipeline.errors import OrchestratorError
from service_pipeline.logging_config import configure_logging
from service_pipeline.models import PipelineVerdict
from service_pipeline.orchestrator import BuildOrchestrator

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_STAGE_FAILURE = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 130


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--registry", help="Comma separated service identifiers, in build order")
@click.option("--base-rev", required=True, help="Base revision of the diff")
@click.option("--head-rev", default="HEAD", show_default=True, help="Head revision of the diff")
@click.option(
    "--tag-policy",
    type=click.Choice(["main", "branch"]),
    default=None,
    help="Image tag policy (default: derived from the branch)",
)
@click.option("--coverage-threshold", type=click.IntRange(0, 100), default=None)
@click.option(
    "--gate-blocks-build/--advisory-gate",
    default=None,
    help="Whether a coverage shortfall keeps a service from building",
)
@click.option("--publish/--no-publish", default=None, help="Run the image publish stage")
@click.option("--branch", default=None, help="Branch being built (default: from git)")
@click.option(
    "--repo",
    "repo_path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Repository root",
)
@click.option(
    "--no-changes",
    type=click.Choice(["fail", "succeed"]),
    default=None,
    help="Verdict when no service changed",
)
@click.option(
    "--reject-branch-runs/--allow-branch-runs",
    default=None,
    help="Reject runs under the branch tag policy",
)
@click.option("--max-concurrency", "max_concurrent_services", type=click.IntRange(1, 64), default=None)
@click.option(
    "--run-timeout",
    "run_timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Cancel the run after this many seconds",
)
@click.option("--log-format", type=click.Choice(["console", "json"]), default=None)
@click.option("--log-level", default=None)
def orchestrate(base_rev: str, head_rev: str, **options: Any) -> None:
    """Test, build and publish only the services changed between two revisions."""
    try:
        settings = load_settings(**options)
    except ValidationError as e:
        click.echo(f"Invalid configuration:\n{e}", err=True)
        raise SystemExit(EXIT_ABORTED)

    configure_logging(settings.log_format, settings.log_level)
    raise SystemExit(run(settings, base_rev, head_rev))


def run(
    settings: Settings,
    base_rev: str,
    head_rev: str,
    orchestrator: BuildOrchestrator | None = None,
) -> int:
    """Run one orchestration and map its result to an exit code."""
    orchestrator = orchestrator or BuildOrchestrator.from_settings(settings)

    try:
        verdict = asyncio.run(
            _run_cancellable(orchestrator, base_rev, head_rev, settings.run_timeout_seconds)
        )
    except OrchestratorError as e:
        click.echo(f"Run aborted: {e}", err=True)
        return EXIT_ABORTED
    except TimeoutError:
        click.echo(
            f"Run timed out after {settings.run_timeout_seconds}s; in-flight commands were terminated",
            err=True,
        )
        return EXIT_CANCELLED
    except (asyncio.CancelledError, KeyboardInterrupt):
        click.echo("Run cancelled; in-flight commands were terminated", err=True)
        return EXIT_CANCELLED

    _echo_failures(verdict)
    return EXIT_OK if verdict.success else EXIT_STAGE_FAILURE


async def _run_cancellable(
    orchestrator: BuildOrchestrator,
    base_rev: str,
    head_rev: str,
    timeout_seconds: float | None = None,
) -> PipelineVerdict:
    """Run with SIGTERM cancelling the run the way Ctrl-C does, within an optional deadline."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    installed = False
    if task is not None:
        try:
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("sigterm_handler_unavailable")

    try:
        async with asyncio.timeout(timeout_seconds):
            return await orchestrator.run(base_rev, head_rev)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGTERM)


def _echo_failures(verdict: PipelineVerdict) -> None:
    for failure in verdict.failed:
        click.echo(
            f"FAILED {failure.service} in {failure.stage} ({failure.outcome.value}): {failure.error}",
            err=True,
        )
    for warning in verdict.warnings:
        click.echo(
            f"WARNING {warning.service} in {warning.stage} ({warning.outcome.value}): {warning.error}",
            err=True,
        )


def main() -> None:
    """Entry point for CLI."""
    orchestrate()


if __name__ == "__main__":
    main()
