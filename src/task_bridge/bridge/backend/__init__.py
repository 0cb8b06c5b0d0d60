"""Agent session runners."""

from task_bridge.bridge.backend.base import AgentSession, SessionRequest, SessionResult
from task_bridge.bridge.backend.cli_session import (
    CliAgentSession,
    ProcessExitError,
    SessionError,
    SessionTimeoutError,
    SpawnError,
)

__all__ = [
    "AgentSession",
    "CliAgentSession",
    "ProcessExitError",
    "SessionError",
    "SessionRequest",
    "SessionResult",
    "SessionTimeoutError",
    "SpawnError",
]
