"""Task models and seed loading exports."""

from .models import (
    PRIORITY_ORDER,
    Task,
    TaskAssignee,
    TaskDraft,
    TaskPriority,
    TaskStatus,
    claim_sort_key,
    sort_for_claiming,
)
from .seeds import SeedLoadError, SeedLoader, load_seed_file

__all__ = [
    "PRIORITY_ORDER",
    "SeedLoadError",
    "SeedLoader",
    "Task",
    "TaskAssignee",
    "TaskDraft",
    "TaskPriority",
    "TaskStatus",
    "claim_sort_key",
    "load_seed_file",
    "sort_for_claiming",
]
