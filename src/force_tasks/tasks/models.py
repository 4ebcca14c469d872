"""Task document models shared by the store, coordinator and tools."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    RELEASED = "released"


class TaskAssignee(str, Enum):
    AI_AGENT = "ai_agent"
    HUMAN = "human"
    ANY = "any"


PRIORITY_ORDER: dict[TaskPriority, int] = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}

_TIMESTAMP_FIELDS = ("claimed_at", "created_at", "updated_at", "due_date", "completed_at", "released_at")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Task(BaseModel):
    """A work item stored as a document in the tasks collection."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Document id assigned by the store.")
    title: str = Field(..., description="Human-readable title, also used for lookups.")
    description: str = Field(default="")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    assignee: TaskAssignee = Field(default=TaskAssignee.ANY)
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    claimed_by: str | None = Field(default=None, alias="claimedBy")
    claimed_at: datetime | None = Field(default=None, alias="claimedAt")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    due_date: datetime | None = Field(default=None, alias="dueDate")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    released_at: datetime | None = Field(default=None, alias="releasedAt")
    tags: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    created_by: str = Field(default="system", alias="createdBy")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags", "dependencies", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(value)
        raise TypeError("tags and dependencies must be sequences of strings")

    @field_validator("metadata", mode="before")
    @classmethod
    def _ensure_mapping(cls, value: Any):
        return value or {}

    @field_validator("created_by", mode="before")
    @classmethod
    def _default_creator(cls, value: Any):
        return value or "system"

    @field_validator(*_TIMESTAMP_FIELDS)
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_claim_pair(self) -> "Task":
        if (self.claimed_by is None) != (self.claimed_at is None):
            raise ValueError("claimedBy and claimedAt must both be set or both be absent")
        return self

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None

    def claim_age(self, now: datetime) -> timedelta | None:
        """Return how long the current claim has been held, or None if unclaimed."""

        if self.claimed_at is None:
            return None
        return now - self.claimed_at

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored document shape (camelCase keys, no id)."""

        document = self.model_dump(by_alias=True, exclude={"id"})
        document["priority"] = self.priority.value
        document["status"] = self.status.value
        document["assignee"] = self.assignee.value
        return document


class TaskDraft(BaseModel):
    """Input describing a task to be created."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee: TaskAssignee = TaskAssignee.ANY
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    tags: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    due_date: datetime | None = Field(default=None, alias="dueDate")
    created_by: str = Field(default="system", alias="createdBy")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Task title must not be empty")
        return normalized

    @field_validator("tags", "dependencies", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(value)
        raise TypeError("tags and dependencies must be sequences of strings")

    @field_validator("due_date")
    @classmethod
    def _normalize_due_date(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def to_document(self, now: datetime) -> dict[str, Any]:
        """Build the initial document for a new, unclaimed pending task."""

        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": TaskStatus.PENDING.value,
            "assignee": self.assignee.value,
            "assignedTo": self.assigned_to,
            "claimedBy": None,
            "claimedAt": None,
            "createdAt": now,
            "updatedAt": now,
            "dueDate": self.due_date,
            "completedAt": None,
            "releasedAt": None,
            "tags": list(self.tags),
            "dependencies": list(self.dependencies),
            "createdBy": self.created_by,
            "metadata": dict(self.metadata),
        }


def claim_sort_key(task: Task) -> tuple[int, int, float]:
    """Priority rank first, then newest creation time; undated tasks last."""

    rank = PRIORITY_ORDER[task.priority]
    if task.created_at is None:
        return (rank, 1, 0.0)
    return (rank, 0, -task.created_at.timestamp())


def sort_for_claiming(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=claim_sort_key)


__all__ = [
    "PRIORITY_ORDER",
    "Task",
    "TaskAssignee",
    "TaskDraft",
    "TaskPriority",
    "TaskStatus",
    "claim_sort_key",
    "sort_for_claiming",
]
