from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from google.api_core import exceptions as api_exceptions

from force_tasks.admin import AdminPolicy
from force_tasks.coordinator import TaskCoordinator
from force_tasks.storage import FirestoreTaskStore

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubSnapshot:
    def __init__(self, doc_id: str, data: dict[str, Any] | None, update_time: datetime | None) -> None:
        self.id = doc_id
        self.exists = data is not None
        self.update_time = update_time
        self._data = copy.deepcopy(data)

    def to_dict(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data)


class StubQuery:
    def __init__(self, collection: "StubCollection", filters=(), limit: int | None = None) -> None:
        self._collection = collection
        self._filters = tuple(filters)
        self._limit = limit

    def where(self, *, filter) -> "StubQuery":  # noqa: A002
        return StubQuery(self._collection, self._filters + (filter,), self._limit)

    def limit(self, count: int) -> "StubQuery":
        return StubQuery(self._collection, self._filters, count)

    def _matches(self, data: dict[str, Any]) -> bool:
        for field_filter in self._filters:
            value = data.get(field_filter.field_path)
            if field_filter.op_string == "==" and value != field_filter.value:
                return False
            if field_filter.op_string == "in" and value not in field_filter.value:
                return False
        return True

    def stream(self):
        self._collection.stream_calls += 1
        results = [
            StubSnapshot(doc_id, data, self._collection.update_times[doc_id])
            for doc_id, data in self._collection.docs.items()
            if self._matches(data)
        ]
        if self._limit is not None:
            results = results[: self._limit]
        return iter(results)


class StubDocument:
    def __init__(self, collection: "StubCollection", doc_id: str) -> None:
        self._collection = collection
        self.id = doc_id

    def get(self) -> StubSnapshot:
        data = self._collection.docs.get(self.id)
        return StubSnapshot(self.id, data, self._collection.update_times.get(self.id))

    def set(self, document_data: dict[str, Any]) -> SimpleNamespace:
        return SimpleNamespace(update_time=self._collection.write(self.id, copy.deepcopy(document_data)))

    def update(self, field_updates: dict[str, Any], option: Any = None) -> SimpleNamespace:
        hook = self._collection.before_update
        if hook is not None:
            self._collection.before_update = None
            hook(self.id)
        if self.id not in self._collection.docs:
            raise api_exceptions.NotFound(f"No document to update: {self.id}")
        if option is not None and option.last_update_time != self._collection.update_times[self.id]:
            raise api_exceptions.FailedPrecondition("the stored version does not match the required base version")
        merged = {**self._collection.docs[self.id], **copy.deepcopy(field_updates)}
        return SimpleNamespace(update_time=self._collection.write(self.id, merged))

    def delete(self) -> None:
        self._collection.docs.pop(self.id, None)
        self._collection.update_times.pop(self.id, None)


class StubCollection(StubQuery):
    def __init__(self, name: str) -> None:
        super().__init__(self)
        self.name = name
        self.docs: dict[str, dict[str, Any]] = {}
        self.update_times: dict[str, datetime] = {}
        self.before_update: Callable[[str], None] | None = None
        self.stream_calls = 0
        self._ids = 0
        self._version = 0

    def write(self, doc_id: str, data: dict[str, Any]) -> datetime:
        self._version += 1
        stamp = BASE_TIME + timedelta(microseconds=self._version)
        self.docs[doc_id] = data
        self.update_times[doc_id] = stamp
        return stamp

    def document(self, document_id: str | None = None) -> StubDocument:
        if document_id is None:
            self._ids += 1
            document_id = f"task-{self._ids}"
        return StubDocument(self, document_id)


class StubBatch:
    def __init__(self, client: "StubFirestoreClient") -> None:
        self._client = client
        self._writes: list[tuple[StubDocument, dict[str, Any]]] = []

    def set(self, reference: StubDocument, document_data: dict[str, Any]) -> None:
        self._writes.append((reference, document_data))

    def commit(self) -> list[SimpleNamespace]:
        self._client.commits += 1
        return [reference.set(data) for reference, data in self._writes]


class StubFirestoreClient:
    def __init__(self) -> None:
        self.collections: dict[str, StubCollection] = {}
        self.commits = 0

    def collection(self, name: str) -> StubCollection:
        if name not in self.collections:
            self.collections[name] = StubCollection(name)
        return self.collections[name]

    def batch(self) -> StubBatch:
        return StubBatch(self)

    def write_option(self, **kwargs: Any) -> SimpleNamespace:
        return SimpleNamespace(**kwargs)


def task_document(title: str, **overrides: Any) -> dict[str, Any]:
    document = {
        "title": title,
        "description": "",
        "priority": "medium",
        "status": "pending",
        "assignee": "ai_agent",
        "claimedBy": None,
        "claimedAt": None,
        "createdAt": BASE_TIME - timedelta(days=1),
        "updatedAt": BASE_TIME - timedelta(days=1),
        "tags": [],
        "createdBy": "system",
        "metadata": {},
    }
    document.update(overrides)
    return document


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def firestore_client() -> StubFirestoreClient:
    return StubFirestoreClient()


@pytest.fixture
def collection(firestore_client: StubFirestoreClient) -> StubCollection:
    return firestore_client.collection("tasks")


@pytest.fixture
def store(firestore_client: StubFirestoreClient, clock: FakeClock) -> FirestoreTaskStore:
    return FirestoreTaskStore("tasks", client_factory=lambda: firestore_client, clock=clock)


@pytest.fixture
def admin_policy() -> AdminPolicy:
    return AdminPolicy(["owner@example.com"], domain="forcefitness.app")


@pytest.fixture
def coordinator(store: FirestoreTaskStore, admin_policy: AdminPolicy) -> TaskCoordinator:
    return TaskCoordinator(store, admin_policy=admin_policy, default_actor="claude-ai-agent")


@pytest.fixture
def add_task(collection: StubCollection) -> Callable[..., str]:
    def _add(title: str, **overrides: Any) -> str:
        reference = collection.document()
        reference.set(task_document(title, **overrides))
        return reference.id

    return _add
