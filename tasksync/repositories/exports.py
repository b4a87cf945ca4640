"""Plain-text task files and README export rendering."""
from __future__ import annotations

import re
from datetime import datetime, timezone

from tasksync.models import Task

README_START_MARKER = "<!-- TASKMASTER_EXPORT_START -->"
README_END_MARKER = "<!-- TASKMASTER_EXPORT_END -->"

_STATUS_SYMBOLS = {
    "done": "✓",
    "in-progress": "►",
    "pending": "○",
    "review": "?",
    "deferred": "x",
    "cancelled": "x",
}


def _deps_text(deps: list) -> str:
    return ", ".join(str(dep) for dep in deps) if deps else "None"


def task_file_name(task: Task) -> str:
    return f"task_{task.id:03d}.txt"


def render_task_file(task: Task) -> str:
    lines = [
        f"# Task ID: {task.id}",
        f"# Title: {task.title}",
        f"# Status: {task.status}",
        f"# Dependencies: {_deps_text(task.dependencies)}",
        f"# Priority: {task.priority}",
        f"# Description: {task.description}",
        "# Details:",
        task.details,
        "",
        "# Test Strategy:",
        task.testStrategy,
    ]
    if task.subtasks:
        lines.extend(["", "# Subtasks:"])
        for subtask in task.subtasks:
            lines.extend([
                f"## {subtask.id}. {subtask.title} [{subtask.status}]",
                f"### Dependencies: {_deps_text(subtask.dependencies)}",
                f"### Description: {subtask.description}",
                "### Details:",
                subtask.details,
                "",
            ])
    return "\n".join(lines).rstrip() + "\n"


def render_readme_section(tasks: list[Task], with_subtasks: bool = False) -> str:
    done = sum(1 for task in tasks if task.status == "done")
    total = len(tasks)
    pct = round(done * 100 / total) if total else 0
    exported = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    lines = [
        README_START_MARKER,
        "## Tasks",
        "",
        f"Progress: {done}/{total} done ({pct}%) · exported {exported}",
        "",
        "| ID | Title | Status | Priority | Dependencies |",
        "|----|-------|--------|----------|--------------|",
    ]
    for task in tasks:
        symbol = _STATUS_SYMBOLS.get(task.status, "")
        lines.append(
            f"| {task.id} | {task.title} | {symbol} {task.status} | {task.priority} | {_deps_text(task.dependencies)} |"
        )
        if with_subtasks:
            for subtask in task.subtasks:
                symbol = _STATUS_SYMBOLS.get(subtask.status, "")
                lines.append(
                    f"| {task.id}.{subtask.id} | └ {subtask.title} | {symbol} {subtask.status} | | {_deps_text(subtask.dependencies)} |"
                )
    lines.append(README_END_MARKER)
    return "\n".join(lines)


def merge_readme(existing: str, section: str) -> str:
    """Replace the export block in ``existing``, appending one if absent."""
    pattern = re.compile(
        re.escape(README_START_MARKER) + r".*?" + re.escape(README_END_MARKER),
        re.DOTALL,
    )
    if pattern.search(existing):
        return pattern.sub(lambda _: section, existing, count=1)
    if existing and not existing.endswith("\n"):
        existing += "\n"
    separator = "\n" if existing else ""
    return f"{existing}{separator}{section}\n"
