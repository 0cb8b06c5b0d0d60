"""Session interface for agent execution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True, frozen=True)
class SessionRequest:
    """Inputs for one bounded agent session."""

    prompt: str
    workdir: Path
    allowed_tools: tuple[str, ...] = ()
    timeout_seconds: float | None = None
    env: Mapping[str, str] | None = None


@dataclass(slots=True, frozen=True)
class SessionResult:
    """Successful session outcome."""

    output: str
    exit_code: int = 0


class AgentSession(Protocol):
    """Protocol implemented by session runners."""

    async def run(self, request: SessionRequest) -> SessionResult:
        """Run one agent session; failures raise ``SessionError`` subclasses."""
