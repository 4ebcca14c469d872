"""Task lifecycle state machine over the task store.

Every transition reads a snapshot, validates it against the transition table
and writes back conditionally on that snapshot's update time. A write that
loses a race surfaces as ``ConcurrentUpdateError`` (``ClaimConflictError``
for claims) instead of silently overwriting the other actor's change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from .admin import AdminPolicy
from .config import ForceTasksSettings
from .storage import FirestoreTaskStore, StaleWriteError, TaskSnapshot
from .tasks.models import (
    Task,
    TaskAssignee,
    TaskDraft,
    TaskPriority,
    TaskStatus,
    sort_for_claiming,
)

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.RELEASED)
ACTIVE_STATUSES = (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW)

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.RELEASED}),
    TaskStatus.RELEASED: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.REVIEW, TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.RELEASED}
    ),
    TaskStatus.REVIEW: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.RELEASED}
    ),
    TaskStatus.COMPLETED: frozenset(),
}


class TaskCoordinatorError(RuntimeError):
    """Base class for task lifecycle errors."""


class TaskNotFoundError(TaskCoordinatorError):
    """Raised when no task matches an id or title lookup."""


class InvalidTransitionError(TaskCoordinatorError):
    """Raised when a task is not in a state that allows the requested operation."""


class NotClaimantError(TaskCoordinatorError):
    """Raised when an actor operates on a task claimed by someone else."""


class ConcurrentUpdateError(TaskCoordinatorError):
    """Raised when a task changed between being read and being written."""


class ClaimConflictError(ConcurrentUpdateError):
    """Raised when another actor claimed the task first."""


@dataclass(slots=True)
class ReleasedTask:
    task_id: str
    title: str
    previous_claimant: str | None
    hours_claimed: float
    reason: str


@dataclass(slots=True)
class SweepReport:
    checked_at: datetime
    threshold_hours: float
    released: list[ReleasedTask] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def released_count(self) -> int:
        return len(self.released)


def _matches_search(task: Task, needle: str) -> bool:
    haystacks = [task.title.lower(), task.description.lower()]
    haystacks.extend(tag.lower() for tag in task.tags)
    return any(needle in hay for hay in haystacks)


def _creation_order(task: Task) -> float:
    return task.created_at.timestamp() if task.created_at else float("-inf")


class TaskCoordinator:
    """Owns the claim / complete / release lifecycle for tasks."""

    def __init__(
        self,
        store: FirestoreTaskStore,
        *,
        stale_after: timedelta = timedelta(hours=2),
        stale_statuses: Iterable[TaskStatus | str] = ACTIVE_STATUSES,
        default_actor: str = "claude-ai-agent",
        admin_policy: AdminPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._stale_after = stale_after
        self._stale_statuses = tuple(TaskStatus(status) for status in stale_statuses)
        self._default_actor = default_actor
        self._admin_policy = admin_policy or AdminPolicy()
        self._clock = clock or store.now

    @classmethod
    def from_settings(cls, settings: ForceTasksSettings, store: FirestoreTaskStore) -> "TaskCoordinator":
        return cls(
            store,
            stale_after=timedelta(hours=settings.stale_claim_hours),
            stale_statuses=settings.stale_statuses,
            default_actor=settings.default_agent_id,
            admin_policy=AdminPolicy.from_settings(settings),
        )

    @property
    def store(self) -> FirestoreTaskStore:
        return self._store

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    @property
    def default_actor(self) -> str:
        return self._default_actor

    # -- lookups -----------------------------------------------------------

    def _load(self, task_id: str) -> TaskSnapshot:
        snapshot = self._store.get(task_id)
        if snapshot is None:
            raise TaskNotFoundError(f"Task '{task_id}' not found")
        return snapshot

    def get(self, task_id: str) -> Task:
        return self._load(task_id).task

    def list_tasks(
        self,
        *,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        assignee: TaskAssignee | str | None = None,
        search: str | None = None,
    ) -> list[Task]:
        """Return tasks newest first, narrowed by the dashboard-style filters."""

        if status is not None:
            snapshots = self._store.query(statuses=[TaskStatus(status)])
        else:
            snapshots = self._store.list_all()
        tasks = [snapshot.task for snapshot in snapshots]
        if priority is not None:
            tasks = [task for task in tasks if task.priority == TaskPriority(priority)]
        if assignee is not None:
            tasks = [task for task in tasks if task.assignee == TaskAssignee(assignee)]
        if search:
            needle = search.lower()
            tasks = [task for task in tasks if _matches_search(task, needle)]
        return sorted(tasks, key=_creation_order, reverse=True)

    def _available_snapshots(self, assignee: TaskAssignee | str | None) -> list[TaskSnapshot]:
        wanted = TaskAssignee(assignee) if assignee is not None else None
        snapshots = [
            snapshot
            for snapshot in self._store.query(statuses=CLAIMABLE_STATUSES)
            if not snapshot.task.is_claimed
            and (
                wanted in (None, TaskAssignee.ANY)
                or snapshot.task.assignee in (wanted, TaskAssignee.ANY)
            )
        ]
        order = {task.id: index for index, task in enumerate(sort_for_claiming(s.task for s in snapshots))}
        return sorted(snapshots, key=lambda snapshot: order[snapshot.id])

    def available(self, assignee: TaskAssignee | str | None = None) -> list[Task]:
        """Unclaimed tasks an actor may pick up, in claiming order."""

        return [snapshot.task for snapshot in self._available_snapshots(assignee)]

    def claimed_by(self, actor: str) -> list[Task]:
        snapshots = self._store.query(statuses=ACTIVE_STATUSES, claimedBy=actor)
        tasks = [snapshot.task for snapshot in snapshots]
        return sorted(tasks, key=lambda task: task.claimed_at.timestamp() if task.claimed_at else 0.0, reverse=True)

    def _find_by_title(self, title: str, statuses: Iterable[TaskStatus] | None) -> list[TaskSnapshot]:
        return self._store.query(title=title, statuses=tuple(statuses) if statuses else None)

    # -- guards ------------------------------------------------------------

    @staticmethod
    def _require_status(task: Task, allowed: Iterable[TaskStatus], operation: str) -> None:
        allowed = tuple(allowed)
        if task.status not in allowed:
            names = ", ".join(status.value for status in allowed)
            raise InvalidTransitionError(
                f"Cannot {operation} task '{task.title}' in status {task.status.value} (expected {names})"
            )

    @staticmethod
    def _require_claimant(task: Task, actor: str | None) -> None:
        if actor is not None and task.is_claimed and task.claimed_by != actor:
            raise NotClaimantError(f"Task '{task.title}' is claimed by {task.claimed_by}, not {actor}")

    def _write(self, snapshot: TaskSnapshot, changes: dict[str, Any], operation: str) -> Task:
        try:
            return self._store.update(snapshot, changes).task
        except StaleWriteError as exc:
            raise ConcurrentUpdateError(
                f"Task '{snapshot.task.title}' changed while trying to {operation}; re-read and retry"
            ) from exc

    # -- transitions -------------------------------------------------------

    def _claim_snapshot(self, snapshot: TaskSnapshot, actor: str) -> Task:
        task = snapshot.task
        self._require_status(task, CLAIMABLE_STATUSES, "claim")
        if task.is_claimed:
            raise InvalidTransitionError(f"Task '{task.title}' is already claimed by {task.claimed_by}")

        now = self._clock()
        try:
            claimed = self._store.update(
                snapshot,
                {
                    "status": TaskStatus.IN_PROGRESS,
                    "claimedBy": actor,
                    "claimedAt": now,
                    "updatedAt": now,
                },
            ).task
        except StaleWriteError as exc:
            raise ClaimConflictError(f"Task '{task.title}' was claimed by another actor first") from exc

        logger.info("Claimed task", extra={"task_id": task.id, "title": task.title, "actor": actor})
        return claimed

    def claim(self, task_id: str, actor: str | None = None) -> Task:
        return self._claim_snapshot(self._load(task_id), actor or self._default_actor)

    def claim_by_title(self, title: str, actor: str | None = None) -> Task:
        candidates = [
            snapshot
            for snapshot in self._find_by_title(title, CLAIMABLE_STATUSES)
            if not snapshot.task.is_claimed
        ]
        if not candidates:
            raise TaskNotFoundError(f"No unclaimed task titled '{title}'")
        return self._claim_snapshot(candidates[0], actor or self._default_actor)

    def claim_next(self, actor: str | None = None, assignee: TaskAssignee | str | None = None) -> Task:
        """Claim the highest-priority available task, skipping ones lost to other claimers."""

        actor = actor or self._default_actor
        for snapshot in self._available_snapshots(assignee):
            try:
                return self._claim_snapshot(snapshot, actor)
            except ClaimConflictError:
                logger.info(
                    "Lost claim race, trying next task",
                    extra={"task_id": snapshot.id, "actor": actor},
                )
        raise TaskNotFoundError("No available tasks to claim")

    def _completion_metadata(self, task: Task, notes: str, actor: str | None, now: datetime) -> dict[str, Any]:
        return {
            **task.metadata,
            "completionNotes": notes,
            "completedImplementation": now.isoformat(),
            "implementedBy": actor or task.claimed_by or self._default_actor,
        }

    def _complete_snapshot(self, snapshot: TaskSnapshot, notes: str, actor: str | None) -> Task:
        task = snapshot.task
        self._require_status(task, (TaskStatus.IN_PROGRESS,), "complete")
        self._require_claimant(task, actor)
        now = self._clock()
        completed = self._write(
            snapshot,
            {
                "status": TaskStatus.REVIEW,
                "updatedAt": now,
                "metadata": self._completion_metadata(task, notes, actor, now),
            },
            "complete",
        )
        logger.info("Task moved to review", extra={"task_id": task.id, "title": task.title})
        return completed

    def complete(self, task_id: str, notes: str = "", actor: str | None = None) -> Task:
        """Hand an in-progress task to review; the claim is kept."""

        return self._complete_snapshot(self._load(task_id), notes, actor)

    def complete_by_title(self, title: str, notes: str = "", actor: str | None = None) -> Task:
        candidates = self._find_by_title(title, (TaskStatus.IN_PROGRESS,))
        if not candidates:
            raise TaskNotFoundError(f"No in-progress task titled '{title}'")
        return self._complete_snapshot(candidates[0], notes, actor)

    def _complete_direct_snapshot(self, snapshot: TaskSnapshot, notes: str, actor: str | None) -> Task:
        task = snapshot.task
        self._require_status(
            task, (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.REVIEW), "complete"
        )
        self._require_claimant(task, actor)
        now = self._clock()
        completed = self._write(
            snapshot,
            {
                "status": TaskStatus.COMPLETED,
                "completedAt": now,
                "updatedAt": now,
                "claimedBy": None,
                "claimedAt": None,
                "metadata": self._completion_metadata(task, notes, actor, now),
            },
            "complete",
        )
        logger.info("Task completed", extra={"task_id": task.id, "title": task.title})
        return completed

    def complete_direct(self, task_id: str, notes: str = "", actor: str | None = None) -> Task:
        """Mark a task completed without a review stage and drop its claim."""

        return self._complete_direct_snapshot(self._load(task_id), notes, actor)

    def complete_direct_by_title(self, title: str, notes: str = "", actor: str | None = None) -> Task:
        candidates = [
            snapshot
            for snapshot in self._find_by_title(title, None)
            if snapshot.task.status is not TaskStatus.COMPLETED
        ]
        if not candidates:
            raise TaskNotFoundError(f"No open task titled '{title}'")
        return self._complete_direct_snapshot(candidates[0], notes, actor)

    def _release_changes(self, task: Task, reason: str, now: datetime, **extra: Any) -> dict[str, Any]:
        return {
            "status": TaskStatus.PENDING,
            "claimedBy": None,
            "claimedAt": None,
            "releasedAt": now,
            "updatedAt": now,
            "metadata": {
                **task.metadata,
                "previousClaimBy": task.claimed_by,
                "releaseReason": reason,
                **extra,
            },
        }

    def release(self, task_id: str, actor: str | None = None) -> Task:
        """Give up a claim and return the task to pending."""

        snapshot = self._load(task_id)
        task = snapshot.task
        self._require_status(task, ACTIVE_STATUSES, "release")
        self._require_claimant(task, actor)
        released = self._write(snapshot, self._release_changes(task, "manual", self._clock()), "release")
        logger.info(
            "Released task",
            extra={"task_id": task.id, "title": task.title, "previous_claimant": task.claimed_by},
        )
        return released

    def release_stale(self, now: datetime | None = None) -> SweepReport:
        """Return every claim older than the stale threshold to pending."""

        now = now or self._clock()
        cutoff = now - self._stale_after
        report = SweepReport(checked_at=now, threshold_hours=self._stale_after.total_seconds() / 3600)
        if not self._stale_statuses:
            return report

        for snapshot in self._store.query(statuses=self._stale_statuses):
            task = snapshot.task
            if task.claimed_at is None or task.claimed_at >= cutoff:
                continue
            hours = round((now - task.claimed_at).total_seconds() / 3600, 1)
            reason = "stale_review" if task.status is TaskStatus.REVIEW else "stale_claim"
            changes = self._release_changes(task, reason, now, hoursClaimed=hours)
            try:
                self._store.update(snapshot, changes)
            except StaleWriteError:
                logger.warning(
                    "Skipped stale task that changed during sweep",
                    extra={"task_id": task.id, "title": task.title},
                )
                report.skipped.append(task.id)
                continue
            report.released.append(
                ReleasedTask(
                    task_id=task.id,
                    title=task.title,
                    previous_claimant=task.claimed_by,
                    hours_claimed=hours,
                    reason=reason,
                )
            )
            logger.info(
                "Released stale task",
                extra={
                    "task_id": task.id,
                    "title": task.title,
                    "previous_claimant": task.claimed_by,
                    "hours_claimed": hours,
                },
            )
        return report

    # -- admin operations --------------------------------------------------

    def set_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        *,
        admin: str,
        force: bool = False,
    ) -> Task:
        """Move a task to ``status`` on behalf of an administrator.

        Without ``force`` only transitions in ``ALLOWED_TRANSITIONS`` are
        accepted. Claim fields are kept consistent with the target status.
        """

        admin_email = self._admin_policy.require(admin)
        target = TaskStatus(status)
        snapshot = self._load(task_id)
        task = snapshot.task
        if target is task.status:
            return task
        if not force and target not in ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransitionError(
                f"Cannot move task '{task.title}' from {task.status.value} to {target.value}"
            )

        now = self._clock()
        changes: dict[str, Any] = {"status": target, "updatedAt": now}
        if target is TaskStatus.COMPLETED:
            changes.update({"completedAt": now, "claimedBy": None, "claimedAt": None})
        elif target in CLAIMABLE_STATUSES:
            changes.update({"claimedBy": None, "claimedAt": None})
            if target is TaskStatus.RELEASED:
                changes["releasedAt"] = now
        elif not task.is_claimed:
            changes.update({"claimedBy": admin_email, "claimedAt": now})

        updated = self._write(snapshot, changes, f"set status {target.value}")
        logger.info(
            "Task status changed",
            extra={"task_id": task.id, "from": task.status.value, "to": target.value, "admin": admin_email},
        )
        return updated

    def set_priority(self, task_id: str, priority: TaskPriority | str, *, admin: str) -> Task:
        self._admin_policy.require(admin)
        snapshot = self._load(task_id)
        return self._write(
            snapshot,
            {"priority": TaskPriority(priority), "updatedAt": self._clock()},
            "set priority",
        )

    def delete(self, task_id: str, *, admin: str) -> None:
        self._admin_policy.require(admin)
        self._load(task_id)
        self._store.delete(task_id)
        logger.info("Deleted task", extra={"task_id": task_id, "admin": admin})

    # -- creation ----------------------------------------------------------

    def create(self, draft: TaskDraft) -> Task:
        task = self._store.create(draft)
        logger.info("Created task", extra={"task_id": task.id, "title": task.title})
        return task

    def create_many(self, drafts: Iterable[TaskDraft]) -> list[Task]:
        tasks = self._store.create_many(drafts)
        logger.info("Created tasks", extra={"count": len(tasks)})
        return tasks


__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "CLAIMABLE_STATUSES",
    "ClaimConflictError",
    "ConcurrentUpdateError",
    "InvalidTransitionError",
    "NotClaimantError",
    "ReleasedTask",
    "SweepReport",
    "TaskCoordinator",
    "TaskCoordinatorError",
    "TaskNotFoundError",
]
