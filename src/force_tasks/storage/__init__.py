"""Storage abstractions for force-tasks."""

from .firestore import (
    FirestoreTaskStore,
    FirestoreUnavailableError,
    StaleWriteError,
    TaskDocumentError,
    TaskStoreError,
)
from .models import TaskSnapshot

__all__ = [
    "FirestoreTaskStore",
    "FirestoreUnavailableError",
    "StaleWriteError",
    "TaskDocumentError",
    "TaskSnapshot",
    "TaskStoreError",
]
