"""
Source-control collaborator backed by the git CLI.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from service_pipeline.errors import ChangeDetectionError
from service_pipeline.runner import CommandResult, CommandRunner

logger = structlog.get_logger(__name__)


class SourceControl(Protocol):
    async def changed_paths(self, base_rev: str, head_rev: str) -> list[str]: ...

    async def short_revision(self, rev: str) -> str: ...

    async def tags_containing(self, rev: str) -> list[str]: ...

    async def current_branch(self) -> str: ...


class GitClient:
    """
    Reads revision information from a local git checkout.

    Every failure raises ChangeDetectionError: nothing here is retried.
    """

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    async def _git(self, *args: str) -> CommandResult:
        result = await self._runner.run(["git", *args])
        if not result.ok:
            raise ChangeDetectionError(f"git {' '.join(args)} failed: {result.failure_detail()}")
        return result

    async def changed_paths(self, base_rev: str, head_rev: str) -> list[str]:
        """
        Paths changed between two revisions (additions, edits, deletions, renames).

        Output is NUL separated so paths git would otherwise C-quote (non-ASCII,
        quotes, backslashes, newlines) come back verbatim.
        """
        result = await self._runner.run(
            ["git", "diff", "--name-only", "-z", "--no-renames", base_rev, head_rev]
        )
        if not result.ok:
            raise ChangeDetectionError(
                f"diff retrieval failed: {result.failure_detail()}",
                base_rev=base_rev,
                head_rev=head_rev,
            )

        paths = [path for path in result.stdout.split("\0") if path]
        logger.info(
            "changed_paths_retrieved",
            base_rev=base_rev,
            head_rev=head_rev,
            count=len(paths),
        )
        return paths

    async def short_revision(self, rev: str = "HEAD") -> str:
        result = await self._git("rev-parse", "--short", rev)
        return result.stdout.strip()

    async def tags_containing(self, rev: str = "HEAD") -> list[str]:
        """Tags whose history contains the revision, as git lists them."""
        result = await self._git("tag", "--contains", rev)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def current_branch(self) -> str:
        result = await self._git("rev-parse", "--abbrev-ref", "HEAD")
        return result.stdout.strip()
