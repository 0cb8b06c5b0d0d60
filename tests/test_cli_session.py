from __future__ import annotations

import asyncio
import time
from pathlib import Path

import allure
import pytest

from task_bridge.bridge.backend import (
    CliAgentSession,
    ProcessExitError,
    SessionRequest,
    SessionTimeoutError,
    SpawnError,
)
from task_bridge.bridge.backend.cli_session import build_agent_args

pytestmark = [
    allure.epic("Task Bridge"),
    allure.feature("Agent Session"),
]


def test_build_agent_args_without_tools() -> None:
    assert build_agent_args(prompt="hello") == [
        "--print",
        "--dangerously-skip-permissions",
        "-p",
        "hello",
    ]


def test_build_agent_args_joins_allowed_tools() -> None:
    args = build_agent_args(prompt="do it", allowed_tools=("Bash", "Read", "Edit"))

    assert args[-2:] == ["--allowedTools", "Bash,Read,Edit"]


def test_prompt_is_passed_as_single_argument() -> None:
    prompt = 'quote " and $HOME; rm -rf /'

    args = build_agent_args(prompt=prompt)

    assert args[args.index("-p") + 1] == prompt


def test_empty_command_is_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        CliAgentSession(command=())


def test_run_returns_stdout_and_uses_workdir(tmp_path: Path, echo_command) -> None:
    session = CliAgentSession(command=echo_command, default_timeout_seconds=30)

    result = asyncio.run(
        session.run(
            SessionRequest(
                prompt="summarize the findings",
                workdir=tmp_path,
                allowed_tools=("WebSearch", "Read"),
            ),
        ),
    )

    assert result.exit_code == 0
    assert f"cwd: {tmp_path.resolve()}" in result.output
    assert "tools: WebSearch,Read" in result.output
    assert "summarize the findings" in result.output


def test_nonzero_exit_raises_with_stderr(tmp_path: Path, echo_command, monkeypatch) -> None:
    monkeypatch.setenv("TASK_BRIDGE_ECHO_EXIT_CODE", "3")
    session = CliAgentSession(command=echo_command, default_timeout_seconds=30)

    with pytest.raises(ProcessExitError) as error_info:
        asyncio.run(session.run(SessionRequest(prompt="fail", workdir=tmp_path)))

    error = error_info.value
    assert error.exit_code == 3
    assert str(error).startswith("Agent exited with code 3")
    assert "\n\nErrors:\necho-agent forced failure" in error.output


def test_timeout_terminates_process(tmp_path: Path, echo_command, monkeypatch) -> None:
    monkeypatch.setenv("TASK_BRIDGE_ECHO_SLEEP_SECONDS", "30")
    session = CliAgentSession(command=echo_command, kill_grace_seconds=1.0)

    started = time.monotonic()
    with pytest.raises(SessionTimeoutError) as error_info:
        asyncio.run(
            session.run(SessionRequest(prompt="slow", workdir=tmp_path, timeout_seconds=1.0)),
        )

    assert time.monotonic() - started < 15
    assert error_info.value.timeout_seconds == 1.0
    assert "timed out after 1s" in str(error_info.value)


def test_missing_binary_raises_spawn_error(tmp_path: Path) -> None:
    session = CliAgentSession(command=("task-bridge-missing-agent-binary",))

    with pytest.raises(SpawnError, match="Failed to start agent"):
        asyncio.run(session.run(SessionRequest(prompt="x", workdir=tmp_path)))


def test_missing_workdir_raises_spawn_error(tmp_path: Path, echo_command) -> None:
    session = CliAgentSession(command=echo_command)

    with pytest.raises(SpawnError):
        asyncio.run(session.run(SessionRequest(prompt="x", workdir=tmp_path / "nowhere")))


def test_is_available(echo_command) -> None:
    assert asyncio.run(CliAgentSession(command=echo_command).is_available()) is True
    assert (
        asyncio.run(CliAgentSession(command=("task-bridge-missing-agent-binary",)).is_available())
        is False
    )


def test_stderr_is_left_out_of_successful_output(
    tmp_path: Path,
    echo_command,
    monkeypatch,
) -> None:
    monkeypatch.setenv("TASK_BRIDGE_ECHO_STDERR", "warning: cache miss")
    session = CliAgentSession(command=echo_command, default_timeout_seconds=30)

    result = asyncio.run(session.run(SessionRequest(prompt="quiet", workdir=tmp_path)))

    assert result.exit_code == 0
    assert "quiet" in result.output
    assert "warning: cache miss" not in result.output
    assert "Errors:" not in result.output


def test_cancelled_run_terminates_process(tmp_path: Path, echo_command, monkeypatch) -> None:
    monkeypatch.setenv("TASK_BRIDGE_ECHO_SLEEP_SECONDS", "30")
    spawned: list[asyncio.subprocess.Process] = []
    create_subprocess_exec = asyncio.create_subprocess_exec

    async def _capturing_exec(*args, **kwargs):
        process = await create_subprocess_exec(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _capturing_exec)
    session = CliAgentSession(command=echo_command, kill_grace_seconds=1.0)

    async def _run_and_cancel() -> None:
        run = asyncio.create_task(session.run(SessionRequest(prompt="slow", workdir=tmp_path)))
        while not spawned:
            await asyncio.sleep(0.01)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

    started = time.monotonic()
    asyncio.run(_run_and_cancel())

    assert time.monotonic() - started < 15
    [process] = spawned
    assert process.returncode is not None
