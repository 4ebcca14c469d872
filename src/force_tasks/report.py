"""Task status reporting."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

from .tasks.models import PRIORITY_ORDER, Task, TaskStatus, sort_for_claiming

_PRIORITY_LABELS = [priority.value for priority in sorted(PRIORITY_ORDER, key=PRIORITY_ORDER.__getitem__)]


def _hours_since(moment: datetime | None, now: datetime) -> float | None:
    if moment is None:
        return None
    return round((now - moment).total_seconds() / 3600, 1)


def _task_line(task: Task, now: datetime) -> dict[str, Any]:
    overdue = task.due_date is not None and task.due_date < now and task.status is not TaskStatus.COMPLETED
    return {
        "id": task.id,
        "title": task.title,
        "priority": task.priority.value,
        "status": task.status.value,
        "assignee": task.assignee.value,
        "claimed_by": task.claimed_by,
        "tags": list(task.tags),
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "overdue": overdue,
    }


def build_report(
    tasks: Iterable[Task],
    now: datetime,
    *,
    stale_after: timedelta = timedelta(hours=2),
    recent_limit: int = 5,
) -> dict[str, Any]:
    """Summarize tasks by status, priority, assignee and claim health."""

    tasks = list(tasks)

    status_counts = {status.value: 0 for status in TaskStatus}
    for task in tasks:
        status_counts[task.status.value] += 1

    pending = [task for task in tasks if task.status is TaskStatus.PENDING]
    unclaimed = sort_for_claiming(task for task in pending if not task.is_claimed)

    in_progress = [
        {
            **_task_line(task, now),
            "hours_since_update": _hours_since(task.updated_at, now),
            "hours_claimed": _hours_since(task.claimed_at, now),
        }
        for task in tasks
        if task.status is TaskStatus.IN_PROGRESS
    ]

    stale = [
        {**_task_line(task, now), "hours_claimed": _hours_since(task.claimed_at, now)}
        for task in tasks
        if task.claimed_at is not None
        and task.status in (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW)
        and now - task.claimed_at > stale_after
    ]

    priority_counts: dict[str, int] = {}
    for task in tasks:
        priority_counts[task.priority.value] = priority_counts.get(task.priority.value, 0) + 1
    priority_distribution = {label: priority_counts[label] for label in _PRIORITY_LABELS if label in priority_counts}

    assignee_counts: dict[str, int] = {}
    for task in tasks:
        assignee_counts[task.assignee.value] = assignee_counts.get(task.assignee.value, 0) + 1
    assignee_distribution = dict(sorted(assignee_counts.items(), key=lambda item: item[1], reverse=True))

    dated = [task for task in tasks if task.updated_at or task.created_at]
    dated.sort(key=lambda task: task.updated_at or task.created_at, reverse=True)
    recent = [
        {
            "id": task.id,
            "title": task.title,
            "status": task.status.value,
            "hours_ago": _hours_since(task.updated_at or task.created_at, now),
        }
        for task in dated[:recent_limit]
    ]

    return {
        "generated_at": now.isoformat(),
        "total": len(tasks),
        "status_counts": status_counts,
        "pending_total": len(pending),
        "unclaimed_total": len(unclaimed),
        "claimed_but_pending": len(pending) - len(unclaimed),
        "unclaimed": [_task_line(task, now) for task in unclaimed],
        "in_progress": in_progress,
        "stale_claims": stale,
        "priority_distribution": priority_distribution,
        "assignee_distribution": assignee_distribution,
        "recent_activity": recent,
    }


def render_report(report: dict[str, Any]) -> str:
    """Render a report produced by ``build_report`` as plain text."""

    lines = ["TASK STATUS REPORT", "=" * 70, f"Generated: {report['generated_at']}", ""]
    lines.append(f"Total tasks: {report['total']}")
    for status, count in report["status_counts"].items():
        lines.append(f"  {status}: {count}")

    lines += ["", "UNCLAIMED TASKS", "-" * 30]
    lines.append(f"Pending: {report['pending_total']}  Unclaimed: {report['unclaimed_total']}")
    for index, task in enumerate(report["unclaimed"], start=1):
        flag = " (OVERDUE)" if task["overdue"] else ""
        lines.append(f"{index}. [{task['priority'].upper()}] {task['title']}{flag}")
        lines.append(f"   id={task['id']} assignee={task['assignee']}")
        if task["tags"]:
            lines.append(f"   tags: {', '.join(task['tags'])}")

    if report["in_progress"]:
        lines += ["", "IN PROGRESS", "-" * 30]
        for task in report["in_progress"]:
            lines.append(
                f"- {task['title']} (claimed by {task['claimed_by'] or 'unknown'}, "
                f"updated {task['hours_since_update']}h ago)"
            )

    if report["stale_claims"]:
        lines += ["", "STALE CLAIMS", "-" * 30]
        for task in report["stale_claims"]:
            lines.append(f"- {task['title']} [{task['status']}] held by {task['claimed_by']} for {task['hours_claimed']}h")

    lines += ["", "PRIORITY DISTRIBUTION", "-" * 30]
    for priority, count in report["priority_distribution"].items():
        lines.append(f"{priority.upper()}: {count}")

    lines += ["", "ASSIGNEE DISTRIBUTION", "-" * 30]
    for assignee, count in report["assignee_distribution"].items():
        lines.append(f"{assignee}: {count}")

    if report["recent_activity"]:
        lines += ["", "RECENT ACTIVITY", "-" * 30]
        for index, entry in enumerate(report["recent_activity"], start=1):
            lines.append(f"{index}. {entry['title']} [{entry['status']}] {entry['hours_ago']}h ago")

    return "\n".join(lines)


__all__ = ["build_report", "render_report"]
