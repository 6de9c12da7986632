"""
Async subprocess runner for external tools.

Every external command (git, test runner, build tool, container engine) goes
through CommandRunner so timeouts and cancellation are handled in one place:
when the awaiting task is cancelled or the timeout expires, the child process
is terminated and, after a grace period, killed.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from service_pipeline.errors import ConfigurationError

logger = structlog.get_logger(__name__)

TERMINATE_GRACE_SECONDS = 5.0
OUTPUT_TAIL_CHARS = 2000


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def failure_detail(self) -> str:
        """Short description of why the command failed."""
        if self.timed_out:
            return f"`{self.command_line}` timed out"
        detail = (self.stderr or self.stdout or "").strip()
        if len(detail) > OUTPUT_TAIL_CHARS:
            detail = "..." + detail[-OUTPUT_TAIL_CHARS:]
        message = f"`{self.command_line}` exited with status {self.returncode}"
        if detail:
            message += f": {detail}"
        return message

    @property
    def command_line(self) -> str:
        return shlex.join(self.args)


def render_command(template: str, **values: str) -> list[str]:
    """
    Split a command template and substitute placeholders per argument.

    The template is tokenised first so substituted values (paths, tags) are
    never re-split or interpreted by a shell.

    Raises:
        ConfigurationError: If the template does not parse or uses an unknown placeholder
    """
    try:
        return [token.format(**values) for token in shlex.split(template)]
    except KeyError as e:
        raise ConfigurationError(
            f"command template {template!r} uses unknown placeholder {{{e.args[0]}}}"
        ) from e
    except (ValueError, IndexError, AttributeError) as e:
        raise ConfigurationError(f"invalid command template {template!r}: {e}") from e


class CommandRunner:
    """
    Runs commands as child processes of the event loop.

    Args:
        cwd: Working directory for every command
        timeout_seconds: Default per-command timeout (None disables it)
        env: Extra environment variables merged over the inherited environment
    """

    def __init__(
        self,
        cwd: Path | str = ".",
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.cwd = Path(cwd)
        self.timeout_seconds = timeout_seconds
        self._env = dict(env) if env else None

    async def run(
        self,
        args: Sequence[str],
        input: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Non-zero exit status is reported in the result, not raised. A missing
        executable is reported as exit status 127.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        argv = tuple(args)
        env = None
        if self._env is not None:
            env = {**os.environ, **self._env}

        logger.debug("command_start", command=shlex.join(argv), cwd=str(self.cwd))
        start = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.cwd),
                env=env,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            return CommandResult(
                args=argv,
                returncode=127,
                stdout="",
                stderr=str(e),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        stdin_bytes = input.encode() if input is not None else None
        timed_out = False
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_bytes), timeout=timeout
            )
        except asyncio.TimeoutError:
            timed_out = True
            await self._terminate(process, argv)
            stdout, stderr = b"", b""
        except asyncio.CancelledError:
            await self._terminate(process, argv)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        result = CommandResult(
            args=argv,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration_ms=duration_ms,
            timed_out=timed_out,
        )

        logger.debug(
            "command_complete",
            command=result.command_line,
            returncode=result.returncode,
            timed_out=timed_out,
            duration_ms=round(duration_ms, 2),
        )
        return result

    async def _terminate(self, process: asyncio.subprocess.Process, argv: tuple[str, ...]) -> None:
        """Terminate a child process, escalating to kill after the grace period."""
        if process.returncode is not None:
            return

        logger.warning("command_terminating", command=shlex.join(argv), pid=process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(
                asyncio.shield(process.wait()), timeout=TERMINATE_GRACE_SECONDS
            )
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
