"""Commit progress entries recorded from a repository's post-commit hook."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from task_bridge.bridge.models import LogEntry, LogKind


class GitError(RuntimeError):
    """A git query against the repository failed."""


@dataclass(slots=True, frozen=True)
class CommitInfo:
    """HEAD commit of a working tree."""

    commit_hash: str
    message: str
    branch: str

    def to_log_entry(self) -> LogEntry:
        return LogEntry(
            kind=LogKind.PROGRESS,
            message=f"Commit created on branch {self.branch}",
            output=f"Hash: {self.commit_hash}\n\n{self.message}",
        )


def read_head_commit(repo: Path) -> CommitInfo:
    """Read hash, message and branch of HEAD in ``repo``."""

    return CommitInfo(
        commit_hash=_git(repo, "rev-parse", "HEAD"),
        message=_git(repo, "log", "-1", "--pretty=%B"),
        branch=_git(repo, "rev-parse", "--abbrev-ref", "HEAD"),
    )


def _git(repo: Path, *args: str) -> str:
    try:
        completed = subprocess.run(  # noqa: S603
            ["git", *args],  # noqa: S607
            cwd=repo,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as error:
        raise GitError("git executable not found") from error
    except subprocess.CalledProcessError as error:
        raise GitError(f"git {' '.join(args)} failed: {error.stderr.strip()}") from error
    return completed.stdout.strip()
