"""Data models for persisted task documents."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..tasks.models import Task


@dataclass(slots=True)
class TaskSnapshot:
    task: Task
    update_time: datetime | None

    @property
    def id(self) -> str:
        return self.task.id


__all__ = ["TaskSnapshot"]
