"""Subprocess-based session runner for the coding agent CLI."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
from collections.abc import Mapping, Sequence
from enum import Enum
from pathlib import Path

from task_bridge.bridge.backend.base import SessionRequest, SessionResult

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND = ("claude",)
PRINT_FLAG = "--print"
SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"
PROMPT_FLAG = "-p"
ALLOWED_TOOLS_FLAG = "--allowedTools"

_READ_CHUNK_BYTES = 4096
_PROMPT_PREVIEW_CHARS = 100


class SessionError(RuntimeError):
    """Agent session did not produce a successful result."""

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class SpawnError(SessionError):
    """Agent process could not be started."""


class ProcessExitError(SessionError):
    """Agent process exited with a nonzero code."""

    def __init__(self, message: str, *, exit_code: int, output: str = "") -> None:
        super().__init__(message, output=output)
        self.exit_code = exit_code


class SessionTimeoutError(SessionError):
    """Agent process outlived its budget and was sent a termination signal."""

    def __init__(self, message: str, *, timeout_seconds: float, output: str = "") -> None:
        super().__init__(message, output=output)
        self.timeout_seconds = timeout_seconds


class SessionState(str, Enum):
    RUNNING = "running"
    TERMINATED = "terminated"


def build_agent_args(*, prompt: str, allowed_tools: Sequence[str] = ()) -> list[str]:
    """Non-interactive, auto-approving invocation with an optional tool allow-list."""

    args = [PRINT_FLAG, SKIP_PERMISSIONS_FLAG, PROMPT_FLAG, prompt]
    if allowed_tools:
        args.extend([ALLOWED_TOOLS_FLAG, ",".join(allowed_tools)])
    return args


def build_agent_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    env = os.environ.copy()
    env["HOME"] = str(Path.home())
    if extra:
        env.update(extra)
    return env


class CliAgentSession:
    """Spawn one agent process per request and supervise it to completion."""

    def __init__(
        self,
        *,
        command: Sequence[str] = DEFAULT_AGENT_COMMAND,
        default_timeout_seconds: float = 300.0,
        kill_grace_seconds: float = 2.0,
    ) -> None:
        if not command:
            raise ValueError("Agent command must not be empty.")
        self.command = tuple(command)
        self.default_timeout_seconds = default_timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

    async def run(self, request: SessionRequest) -> SessionResult:
        argv = [
            *self.command,
            *build_agent_args(prompt=request.prompt, allowed_tools=request.allowed_tools),
        ]
        timeout_seconds = request.timeout_seconds or self.default_timeout_seconds

        logger.info("[agent] Starting in %s", request.workdir)
        logger.info("[agent] Prompt: %s...", request.prompt[:_PROMPT_PREVIEW_CHARS])

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(request.workdir),
                env=build_agent_env(request.env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as error:
            raise SpawnError(f"Failed to start agent {self.command[0]!r}: {error}") from error

        supervised = _SupervisedProcess(process, kill_grace_seconds=self.kill_grace_seconds)
        return await supervised.wait(timeout_seconds)

    async def is_available(self, *, timeout_seconds: float = 30.0) -> bool:
        """Probe the agent binary with ``--version``; never raises."""

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as error:
            logger.debug("Agent probe failed to start: %s", error)
            return False

        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=timeout_seconds)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            return False
        return returncode == 0


class _SupervisedProcess:
    """Two-state lifecycle around one agent process.

    The exit path and the timeout path both go through ``_claim``; only the
    first caller decides the outcome, so a session never resolves twice.
    """

    def __init__(self, process: asyncio.subprocess.Process, *, kill_grace_seconds: float) -> None:
        self.process = process
        self.kill_grace_seconds = kill_grace_seconds
        self.state = SessionState.RUNNING
        self._stdout: list[str] = []
        self._stderr: list[str] = []

    async def wait(self, timeout_seconds: float) -> SessionResult:
        try:
            returncode = await asyncio.wait_for(self._drain_and_wait(), timeout=timeout_seconds)
        except TimeoutError:
            if self._claim():
                await self._terminate()
            raise SessionTimeoutError(
                f"Agent timed out after {timeout_seconds:g}s",
                timeout_seconds=timeout_seconds,
                output=self._combined_output(),
            ) from None
        except asyncio.CancelledError:
            if self._claim():
                await self._terminate()
            raise

        self._claim()
        output = "".join(self._stdout)
        if returncode == 0:
            return SessionResult(output=output, exit_code=0)

        combined = self._combined_output()
        if returncode < 0:
            message = f"Agent was killed by signal {-returncode}: {combined}"
        else:
            message = f"Agent exited with code {returncode}: {combined}"
        raise ProcessExitError(message, exit_code=returncode, output=combined)

    def _claim(self) -> bool:
        if self.state is SessionState.TERMINATED:
            return False
        self.state = SessionState.TERMINATED
        return True

    async def _drain_and_wait(self) -> int:
        if self.process.stdout is None or self.process.stderr is None:
            raise RuntimeError("Agent process was started without output pipes.")
        await asyncio.gather(
            _pump(self.process.stdout, self._stdout, label="stdout", level=logging.INFO),
            _pump(self.process.stderr, self._stderr, label="stderr", level=logging.WARNING),
        )
        return await self.process.wait()

    async def _terminate(self) -> None:
        # Best effort: children the agent spawned are not reaped here.
        try:
            self.process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.kill_grace_seconds)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self.process.wait(), timeout=self.kill_grace_seconds)

    def _combined_output(self) -> str:
        output = "".join(self._stdout)
        errors = "".join(self._stderr)
        if errors:
            return f"{output}\n\nErrors:\n{errors}"
        return output


async def _pump(
    stream: asyncio.StreamReader,
    chunks: list[str],
    *,
    label: str,
    level: int,
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_CHUNK_BYTES)
        if not data:
            tail = decoder.decode(b"", final=True)
            if tail:
                chunks.append(tail)
            return
        text = decoder.decode(data)
        if not text:
            continue
        chunks.append(text)
        logger.log(level, "[agent %s] %s", label, text.rstrip())
