"""Firestore-based persistence layer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Protocol

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account
from pydantic import ValidationError

from ..tasks.models import Task, TaskDraft, TaskStatus
from .models import TaskSnapshot

logger = logging.getLogger(__name__)


class TaskStoreError(RuntimeError):
    """Raised when the document store rejects or fails a request."""


class FirestoreUnavailableError(TaskStoreError):
    """Raised when the Firestore client cannot be constructed."""


class StaleWriteError(TaskStoreError):
    """Raised when a conditional write finds the document changed since it was read."""


class TaskDocumentError(TaskStoreError):
    """Raised when a stored document does not describe a valid task."""


class SnapshotProtocol(Protocol):
    id: str
    exists: bool
    update_time: Any

    def to_dict(self) -> dict[str, Any] | None:
        ...


class DocumentProtocol(Protocol):
    id: str

    def get(self) -> SnapshotProtocol:
        ...

    def set(self, document_data: dict[str, Any]) -> Any:
        ...

    def update(self, field_updates: dict[str, Any], option: Any = None) -> Any:
        ...

    def delete(self) -> Any:
        ...


class QueryProtocol(Protocol):
    def where(self, *, filter: FieldFilter) -> "QueryProtocol":
        ...

    def limit(self, count: int) -> "QueryProtocol":
        ...

    def stream(self) -> Iterable[SnapshotProtocol]:
        ...


class CollectionProtocol(QueryProtocol, Protocol):
    """Protocol for the minimal Firestore collection API used by force-tasks."""

    def document(self, document_id: str | None = None) -> DocumentProtocol:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Firestore client API used by force-tasks."""

    def collection(self, name: str) -> CollectionProtocol:
        ...

    def batch(self) -> Any:
        ...

    def write_option(self, **kwargs: Any) -> Any:
        ...


def _stored_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_stored_value(item) for item in value]
    return value


class FirestoreTaskStore:
    """Manage task documents in a Firestore collection."""

    def __init__(
        self,
        collection_name: str = "tasks",
        *,
        project_id: str | None = None,
        credentials_info: dict[str, Any] | None = None,
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._collection_name = collection_name
        self._project_id = project_id
        self._credentials_info = credentials_info
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def now(self) -> datetime:
        return self._clock()

    def _default_client_factory(self) -> ClientProtocol:
        credentials = None
        try:
            if self._credentials_info is not None:
                credentials = service_account.Credentials.from_service_account_info(
                    self._credentials_info
                )
            return firestore.Client(project=self._project_id, credentials=credentials)
        except (auth_exceptions.GoogleAuthError, ValueError) as exc:
            raise FirestoreUnavailableError(
                f"Could not create Firestore client for project {self._project_id or '<default>'}: {exc}"
            ) from exc

    def _ensure_client(self) -> ClientProtocol:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            self._collection = self._ensure_client().collection(self._collection_name)
        return self._collection

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except api_exceptions.FailedPrecondition as exc:
            raise StaleWriteError(f"Conflicting write while trying to {action}: {exc}") from exc
        except api_exceptions.GoogleAPIError as exc:
            raise TaskStoreError(f"Firestore request failed while trying to {action}: {exc}") from exc

    def _to_snapshot(self, snapshot: SnapshotProtocol) -> TaskSnapshot:
        data = snapshot.to_dict() or {}
        if (data.get("claimedBy") is None) != (data.get("claimedAt") is None):
            # Older writers set claimedBy without claimedAt; read such claims as absent.
            logger.warning(
                "Task document has a partial claim; treating it as unclaimed",
                extra={"task_id": snapshot.id, "claimed_by": data.get("claimedBy")},
            )
            data = {**data, "claimedBy": None, "claimedAt": None}
        try:
            task = Task.model_validate({**data, "id": snapshot.id})
        except ValidationError as exc:
            raise TaskDocumentError(f"Document {snapshot.id} is not a valid task: {exc}") from exc
        return TaskSnapshot(task=task, update_time=snapshot.update_time)

    def _valid_snapshots(self, results: Iterable[SnapshotProtocol]) -> list[TaskSnapshot]:
        snapshots: list[TaskSnapshot] = []
        for snapshot in results:
            try:
                snapshots.append(self._to_snapshot(snapshot))
            except TaskDocumentError as exc:
                logger.warning("Skipping invalid task document", extra={"task_id": snapshot.id, "error": str(exc)})
        return snapshots

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def get(self, task_id: str) -> TaskSnapshot | None:
        collection = self._ensure_collection()
        with self._translate_errors(f"read task {task_id}"):
            snapshot = collection.document(task_id).get()
        if not snapshot.exists:
            return None
        return self._to_snapshot(snapshot)

    def query(
        self,
        *,
        statuses: Iterable[TaskStatus | str] | None = None,
        limit: int | None = None,
        **equals: Any,
    ) -> list[TaskSnapshot]:
        """Return tasks matching equality filters on stored field names.

        ``statuses`` with one entry becomes an equality filter; with several,
        an ``in`` filter. Documents that are not valid tasks are logged and skipped.
        """

        query: QueryProtocol = self._ensure_collection()
        for field_path, value in equals.items():
            query = query.where(filter=FieldFilter(field_path, "==", _stored_value(value)))
        if statuses is not None:
            wanted = [_stored_value(status) for status in statuses]
            if len(wanted) == 1:
                query = query.where(filter=FieldFilter("status", "==", wanted[0]))
            else:
                query = query.where(filter=FieldFilter("status", "in", wanted))
        if limit is not None:
            query = query.limit(limit)
        with self._translate_errors("query tasks"):
            results = list(query.stream())
        return self._valid_snapshots(results)

    def list_all(self) -> list[TaskSnapshot]:
        collection = self._ensure_collection()
        with self._translate_errors("list tasks"):
            results = list(collection.stream())
        return self._valid_snapshots(results)

    def create(self, draft: TaskDraft) -> Task:
        collection = self._ensure_collection()
        document = draft.to_document(self._clock())
        reference = collection.document()
        with self._translate_errors(f"create task '{draft.title}'"):
            reference.set(document)
        logger.debug("Created task", extra={"task_id": reference.id, "title": draft.title})
        return Task.model_validate({**document, "id": reference.id})

    def create_many(self, drafts: Iterable[TaskDraft]) -> list[Task]:
        """Create several tasks in one batched write."""

        collection = self._ensure_collection()
        client = self._ensure_client()
        now = self._clock()
        batch = client.batch()
        created: list[Task] = []
        for draft in drafts:
            document = draft.to_document(now)
            reference = collection.document()
            batch.set(reference, document)
            created.append(Task.model_validate({**document, "id": reference.id}))
        if not created:
            return []
        with self._translate_errors(f"create {len(created)} tasks"):
            batch.commit()
        return created

    def update(self, snapshot: TaskSnapshot, changes: dict[str, Any]) -> TaskSnapshot:
        """Apply ``changes`` only if the document is unchanged since ``snapshot`` was read."""

        collection = self._ensure_collection()
        client = self._ensure_client()
        stored_changes = {key: _stored_value(value) for key, value in changes.items()}
        merged = {**snapshot.task.to_document(), **stored_changes, "id": snapshot.id}
        try:
            updated_task = Task.model_validate(merged)
        except ValidationError as exc:
            raise TaskDocumentError(f"Update would leave task {snapshot.id} invalid: {exc}") from exc

        option = client.write_option(last_update_time=snapshot.update_time)
        with self._translate_errors(f"update task {snapshot.id}"):
            result = collection.document(snapshot.id).update(stored_changes, option=option)
        return TaskSnapshot(task=updated_task, update_time=getattr(result, "update_time", None))

    def delete(self, task_id: str) -> None:
        collection = self._ensure_collection()
        with self._translate_errors(f"delete task {task_id}"):
            collection.document(task_id).delete()


__all__ = [
    "FirestoreTaskStore",
    "FirestoreUnavailableError",
    "StaleWriteError",
    "TaskDocumentError",
    "TaskStoreError",
]
