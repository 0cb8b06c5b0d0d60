"""Per-tag handler policies."""

from task_bridge.bridge.handlers.base import TaskHandler
from task_bridge.bridge.handlers.project import ProjectHandler, resolve_project
from task_bridge.bridge.handlers.research import RESEARCH_RESULTS_HEADER, ResearchHandler

__all__ = [
    "RESEARCH_RESULTS_HEADER",
    "ProjectHandler",
    "ResearchHandler",
    "TaskHandler",
    "resolve_project",
]
