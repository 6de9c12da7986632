"""
Status reporting collaborators.

The console reporter renders a per-service table with rich; the webhook
reporter posts a commit-status style payload with httpx. Reporting is
fire-and-forget: a reporter failure is logged and never changes the verdict.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import structlog
from rich.console import Console
from rich.table import Table

from service_pipeline.models import PipelineVerdict, ServiceReport

logger = structlog.get_logger(__name__)

DESCRIPTION_LIMIT = 140


class StatusReporter(Protocol):
    async def report(self, verdict: PipelineVerdict) -> None: ...


class ConsoleStatusReporter:
    """Prints the run summary table to the console."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def report(self, verdict: PipelineVerdict) -> None:
        if verdict.services:
            self._console.print(build_summary_table(verdict.services))

        style = "bold green" if verdict.success else "bold red"
        label = "SUCCESS" if verdict.success else "FAILURE"
        self._console.print(f"[{style}]{label}[/{style}] {verdict.summary}")
        for image in verdict.published:
            self._console.print(f"  published {image}")
        if verdict.details_url:
            self._console.print(f"  details: {verdict.details_url}")


class WebhookStatusReporter:
    """
    Posts the verdict to a status endpoint.

    Payload: {"state", "description", "target_url", "context"}, the shape
    commit-status APIs accept.
    """

    def __init__(
        self,
        url: str,
        context: str = "ci/orchestrate",
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.context = context
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def payload(self, verdict: PipelineVerdict) -> dict[str, Any]:
        description = verdict.summary
        if len(description) > DESCRIPTION_LIMIT:
            description = description[: DESCRIPTION_LIMIT - 3] + "..."
        return {
            "state": "success" if verdict.success else "failure",
            "description": description,
            "target_url": verdict.details_url,
            "context": self.context,
        }

    async def report(self, verdict: PipelineVerdict) -> None:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=self.payload(verdict), headers=headers)
            response.raise_for_status()

        logger.info("status_reported", url=self.url, state=self.payload(verdict)["state"])


async def report_status(reporters: Sequence[StatusReporter], verdict: PipelineVerdict) -> None:
    """Send the verdict to every reporter, isolating reporter failures."""
    for reporter in reporters:
        try:
            await reporter.report(verdict)
        except Exception as e:
            logger.warning(
                "status_report_failed",
                reporter=type(reporter).__name__,
                error=str(e),
                error_type=type(e).__name__,
            )


def build_summary_table(reports: Sequence[ServiceReport]) -> Table:
    table = Table(title="Service outcomes")
    table.add_column("Service", style="bold")
    table.add_column("Outcome")
    table.add_column("Stage")
    table.add_column("Coverage", justify="right")
    table.add_column("Tests", justify="right")
    table.add_column("Image / error")

    for report in reports:
        outcome = report.outcome.value if report.outcome else "-"
        if report.blocking_failures:
            outcome = f"[red]{outcome}[/red]"
        elif report.warnings:
            outcome = f"[yellow]{outcome}[/yellow]"
        else:
            outcome = f"[green]{outcome}[/green]"

        coverage = f"{report.coverage_percent}%" if report.coverage_percent is not None else "-"
        tests = "-"
        if report.test_summary is not None:
            s = report.test_summary
            tests = f"{s.passed}/{s.tests}"

        table.add_row(
            report.service,
            outcome,
            report.stage or "-",
            coverage,
            tests,
            report.image or report.error or "",
        )

    return table
