"""Tool registration for the force-tasks MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..config import ForceTasksSettings
from ..coordinator import SweepReport, TaskCoordinator
from ..report import build_report
from ..tasks.models import Task, TaskDraft


@dataclass(slots=True)
class ToolHandles:
    list_tasks: Any
    available_tasks: Any
    claim_task: Any
    claim_next_task: Any
    complete_task: Any
    release_task: Any
    release_stale_tasks: Any
    create_task: Any
    update_task_status: Any
    update_task_priority: Any
    task_report: Any


def task_summary(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority.value,
        "status": task.status.value,
        "assignee": task.assignee.value,
        "claimed_by": task.claimed_by,
        "claimed_at": task.claimed_at.isoformat() if task.claimed_at else None,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "released_at": task.released_at.isoformat() if task.released_at else None,
        "tags": list(task.tags),
        "metadata": task.metadata,
    }


def sweep_summary(report: SweepReport) -> dict[str, Any]:
    return {
        "checked_at": report.checked_at.isoformat(),
        "threshold_hours": report.threshold_hours,
        "released": [
            {
                "task_id": entry.task_id,
                "title": entry.title,
                "previous_claimant": entry.previous_claimant,
                "hours_claimed": entry.hours_claimed,
                "reason": entry.reason,
            }
            for entry in report.released
        ],
        "skipped": list(report.skipped),
    }


def register_tools(
    server: FastMCP,
    *,
    settings: ForceTasksSettings,
    coordinator: TaskCoordinator | None,
) -> ToolHandles:
    """Register the task coordination tools on the server."""

    def _require_coordinator() -> TaskCoordinator:
        if coordinator is None:
            raise RuntimeError("Task store is unavailable; configure Firestore access before using this tool")
        return coordinator

    def _list_tasks(
        status: str | None = None,
        priority: str | None = None,
        assignee: str | None = None,
        search: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks newest first with optional filters."""

        tasks = _require_coordinator().list_tasks(
            status=status, priority=priority, assignee=assignee, search=search
        )
        _emit_log(context, "debug", "Listed tasks", extra={"count": len(tasks), "status": status})
        return [task_summary(task) for task in tasks]

    def _available_tasks(
        assignee: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List unclaimed tasks in the order they should be picked up."""

        tasks = _require_coordinator().available(assignee)
        _emit_log(context, "debug", "Listed available tasks", extra={"count": len(tasks)})
        return [task_summary(task) for task in tasks]

    def _claim_task(
        task_id: str | None = None,
        title: str | None = None,
        agent_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Claim a task by id or exact title."""

        coord = _require_coordinator()
        if task_id:
            task = coord.claim(task_id, agent_id)
        elif title:
            task = coord.claim_by_title(title, agent_id)
        else:
            raise ValueError("Provide either task_id or title")
        _emit_log(context, "info", "Claimed task", extra={"task_id": task.id, "actor": task.claimed_by})
        return task_summary(task)

    def _claim_next_task(
        agent_id: str | None = None,
        assignee: str | None = "ai_agent",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Claim the highest-priority available task."""

        task = _require_coordinator().claim_next(agent_id, assignee)
        _emit_log(context, "info", "Claimed next task", extra={"task_id": task.id, "actor": task.claimed_by})
        return task_summary(task)

    def _complete_task(
        task_id: str | None = None,
        title: str | None = None,
        notes: str = "",
        direct: bool = False,
        agent_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Move a task to review, or straight to completed with direct=True."""

        coord = _require_coordinator()
        if task_id:
            task = (
                coord.complete_direct(task_id, notes, agent_id)
                if direct
                else coord.complete(task_id, notes, agent_id)
            )
        elif title:
            task = (
                coord.complete_direct_by_title(title, notes, agent_id)
                if direct
                else coord.complete_by_title(title, notes, agent_id)
            )
        else:
            raise ValueError("Provide either task_id or title")
        _emit_log(context, "info", "Task completed", extra={"task_id": task.id, "status": task.status.value})
        return task_summary(task)

    def _release_task(
        task_id: str,
        agent_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Release a claim and return the task to pending."""

        task = _require_coordinator().release(task_id, agent_id)
        _emit_log(context, "info", "Released task", extra={"task_id": task.id})
        return task_summary(task)

    def _release_stale_tasks(context: Context | None = None) -> dict[str, Any]:
        """Release every claim older than the stale threshold."""

        report = _require_coordinator().release_stale()
        _emit_log(
            context,
            "info",
            "Released stale tasks",
            extra={"released": report.released_count, "skipped": len(report.skipped)},
        )
        return sweep_summary(report)

    def _create_task(
        title: str,
        description: str = "",
        priority: str = "medium",
        assignee: str = "any",
        tags: list[str] | None = None,
        created_by: str = "system",
        metadata: dict[str, Any] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a pending task."""

        draft = TaskDraft(
            title=title,
            description=description,
            priority=priority,
            assignee=assignee,
            tags=tags or [],
            created_by=created_by,
            metadata=metadata or {},
        )
        task = _require_coordinator().create(draft)
        _emit_log(context, "info", "Created task", extra={"task_id": task.id})
        return task_summary(task)

    def _update_task_status(
        task_id: str,
        status: str,
        admin_email: str,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Change a task's status (admin only)."""

        task = _require_coordinator().set_status(task_id, status, admin=admin_email, force=force)
        _emit_log(context, "info", "Updated task status", extra={"task_id": task.id, "status": task.status.value})
        return task_summary(task)

    def _update_task_priority(
        task_id: str,
        priority: str,
        admin_email: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Change a task's priority (admin only)."""

        task = _require_coordinator().set_priority(task_id, priority, admin=admin_email)
        _emit_log(context, "info", "Updated task priority", extra={"task_id": task.id})
        return task_summary(task)

    def _task_report(context: Context | None = None) -> dict[str, Any]:
        """Summarize the task board."""

        coord = _require_coordinator()
        report = build_report(coord.list_tasks(), coord.store.now(), stale_after=coord.stale_after)
        _emit_log(context, "debug", "Built task report", extra={"total": report["total"]})
        return report

    tool_list = server.tool(
        name="list_tasks",
        description="List tasks newest first, optionally filtered by status, priority, assignee or search text.",
    )(_list_tasks)

    tool_available = server.tool(
        name="available_tasks",
        description="List unclaimed tasks sorted urgent to low, newest first within a priority.",
    )(_available_tasks)

    tool_claim = server.tool(
        name="claim_task",
        description=(
            "Claim a pending task by id or exact title. Fails if the task is already claimed "
            "or another agent claims it at the same moment."
        ),
    )(_claim_task)

    tool_claim_next = server.tool(
        name="claim_next_task",
        description="Claim the highest-priority available task for an agent.",
    )(_claim_next_task)

    tool_complete = server.tool(
        name="complete_task",
        description="Move an in-progress task to review, or mark it completed directly with direct=true.",
    )(_complete_task)

    tool_release = server.tool(
        name="release_task",
        description="Release a claimed task back to pending.",
    )(_release_task)

    tool_release_stale = server.tool(
        name="release_stale_tasks",
        description="Release all claims older than the configured stale threshold.",
    )(_release_stale_tasks)

    tool_create = server.tool(
        name="create_task",
        description="Create a new pending task.",
    )(_create_task)

    tool_status = server.tool(
        name="update_task_status",
        description="Admin only: change a task's status; force=true bypasses the transition table.",
    )(_update_task_status)

    tool_priority = server.tool(
        name="update_task_priority",
        description="Admin only: change a task's priority.",
    )(_update_task_priority)

    tool_report = server.tool(
        name="task_report",
        description="Summarize tasks by status, priority, assignee and claim health.",
    )(_task_report)

    return ToolHandles(
        list_tasks=tool_list,
        available_tasks=tool_available,
        claim_task=tool_claim,
        claim_next_task=tool_claim_next,
        complete_task=tool_complete,
        release_task=tool_release,
        release_stale_tasks=tool_release_stale,
        create_task=tool_create,
        update_task_status=tool_status,
        update_task_priority=tool_priority,
        task_report=tool_report,
    )


__all__ = ["ToolHandles", "register_tools", "sweep_summary", "task_summary"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
