"""Prompt builders for agent sessions."""

from __future__ import annotations

from task_bridge.bridge.models import AutomationTag, ProjectConfig, Task


def research_prompt(task: Task) -> str:
    return f"""
Research the following topic and provide a comprehensive summary:

**Topic:** {task.title}
**Context:** {task.context or "None provided"}
**Description:** {task.description or "None"}

Please:
1. Search for relevant information
2. Summarize key findings
3. List useful resources/links
4. Suggest next steps

Format your response as markdown.
""".strip()


def project_prompt(task: Task, project: ProjectConfig) -> str:
    return f"""
Implement the following task in the {project.stack} codebase:

**Task:** {task.title}
**Description:** {task.description or "No description provided"}
**Context:** {task.context or "None"}

Requirements:
1. Make the necessary code changes
2. Run tests: {project.test_command}
3. Create a git branch and commit
4. Report what was done

Do NOT push or create PRs automatically.
""".strip()


def refactor_prompt(task: Task, project: ProjectConfig) -> str:
    return f"""
Refactor the following in the {project.stack} codebase:

**Task:** {task.title}
**Description:** {task.description or "No description provided"}
**Context:** {task.context or "None"}

Requirements:
1. Analyze the current implementation
2. Make refactoring changes while preserving behavior
3. Run tests to ensure nothing breaks: {project.test_command}
4. Create a git branch and commit with clear message
5. Report what was refactored and why

Do NOT push or create PRs automatically.
""".strip()


def infra_prompt(task: Task, project: ProjectConfig) -> str:
    return f"""
Handle the following infrastructure/DevOps task:

**Task:** {task.title}
**Description:** {task.description or "No description provided"}
**Context:** {task.context or "None"}
**Stack:** {project.stack}

Requirements:
1. Make the necessary configuration/infrastructure changes
2. Verify changes work correctly
3. Document any environment variables or setup needed
4. Create a git branch and commit
5. Report what was done

Do NOT push or create PRs automatically.
Be careful with any destructive operations.
""".strip()


def project_class_prompt(task: Task, project: ProjectConfig) -> str:
    """Pick the template matching the task's automation tag."""

    if task.automation_tag == AutomationTag.REFACTOR.value:
        return refactor_prompt(task, project)
    if task.automation_tag == AutomationTag.INFRA.value:
        return infra_prompt(task, project)
    return project_prompt(task, project)
