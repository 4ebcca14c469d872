from __future__ import annotations

from datetime import timedelta

import pytest

from force_tasks.admin import AdminAuthorizationError
from force_tasks.coordinator import (
    ALLOWED_TRANSITIONS,
    ClaimConflictError,
    ConcurrentUpdateError,
    InvalidTransitionError,
    NotClaimantError,
    TaskCoordinator,
    TaskNotFoundError,
)
from force_tasks.tasks import TaskDraft, TaskPriority, TaskStatus

from conftest import BASE_TIME


def test_claim_sets_status_and_claim_fields(coordinator, add_task, collection, clock) -> None:
    task_id = add_task("Replace user badge")

    task = coordinator.claim(task_id, "agent-1")

    assert task.status is TaskStatus.IN_PROGRESS
    assert task.claimed_by == "agent-1"
    assert task.claimed_at == clock()
    assert task.updated_at == clock()
    stored = collection.docs[task_id]
    assert stored["status"] == "in_progress"
    assert stored["claimedBy"] == "agent-1"


def test_claim_uses_default_actor(coordinator, add_task) -> None:
    task_id = add_task("default actor")
    assert coordinator.claim(task_id).claimed_by == "claude-ai-agent"


def test_claiming_claimed_task_is_rejected(coordinator, add_task) -> None:
    task_id = add_task("taken")
    coordinator.claim(task_id, "agent-1")

    with pytest.raises(InvalidTransitionError):
        coordinator.claim(task_id, "agent-2")


def test_pending_task_with_leftover_claim_is_not_claimable(coordinator, add_task) -> None:
    task_id = add_task("leftover", claimedBy="ghost", claimedAt=BASE_TIME)

    with pytest.raises(InvalidTransitionError, match="already claimed"):
        coordinator.claim(task_id, "agent-1")
    assert coordinator.available() == []


def test_released_task_is_claimable(coordinator, add_task) -> None:
    task_id = add_task("again", status="released", releasedAt=BASE_TIME)
    assert coordinator.claim(task_id, "agent-1").status is TaskStatus.IN_PROGRESS


def test_claim_missing_task(coordinator) -> None:
    with pytest.raises(TaskNotFoundError):
        coordinator.claim("missing", "agent-1")


def test_concurrent_claim_has_single_winner(coordinator, add_task, collection, clock) -> None:
    task_id = add_task("contested")

    def rival_claims_first(doc_id: str) -> None:
        collection.docs[doc_id].update({"status": "in_progress", "claimedBy": "rival", "claimedAt": clock()})
        collection.write(doc_id, collection.docs[doc_id])

    collection.before_update = rival_claims_first

    with pytest.raises(ClaimConflictError):
        coordinator.claim(task_id, "agent-1")

    assert collection.docs[task_id]["claimedBy"] == "rival"


def test_claim_next_skips_task_lost_to_rival(coordinator, add_task, collection, clock) -> None:
    first = add_task("urgent one", priority="urgent")
    second = add_task("high one", priority="high")

    def rival_claims_first(doc_id: str) -> None:
        assert doc_id == first
        collection.docs[doc_id].update({"status": "in_progress", "claimedBy": "rival", "claimedAt": clock()})
        collection.write(doc_id, collection.docs[doc_id])

    collection.before_update = rival_claims_first

    task = coordinator.claim_next("agent-1")
    assert task.id == second
    assert task.claimed_by == "agent-1"


def test_claim_next_with_nothing_available(coordinator) -> None:
    with pytest.raises(TaskNotFoundError):
        coordinator.claim_next("agent-1")


def test_claim_by_title(coordinator, add_task) -> None:
    add_task("Add Meal Plan Link to Main Navigation")
    task = coordinator.claim_by_title("Add Meal Plan Link to Main Navigation", "agent-1")
    assert task.claimed_by == "agent-1"

    with pytest.raises(TaskNotFoundError):
        coordinator.claim_by_title("Add Meal Plan Link to Main Navigation", "agent-2")


def test_available_orders_by_priority_then_newest(coordinator, add_task) -> None:
    add_task("low", priority="low", createdAt=BASE_TIME)
    add_task("medium", priority="medium", createdAt=BASE_TIME)
    add_task("urgent", priority="urgent", createdAt=BASE_TIME)
    add_task("high old", priority="high", createdAt=BASE_TIME - timedelta(days=2))
    add_task("high new", priority="high", createdAt=BASE_TIME)
    add_task("claimed", priority="urgent", status="in_progress", claimedBy="a", claimedAt=BASE_TIME)

    titles = [task.title for task in coordinator.available()]
    assert titles == ["urgent", "high new", "high old", "medium", "low"]


def test_available_filters_by_assignee(coordinator, add_task) -> None:
    add_task("agent work", assignee="ai_agent")
    add_task("human work", assignee="human")
    add_task("anyone", assignee="any")

    assert {task.title for task in coordinator.available("ai_agent")} == {"agent work", "anyone"}
    assert {task.title for task in coordinator.available("human")} == {"human work", "anyone"}
    assert len(coordinator.available()) == 3


def test_soft_complete_moves_to_review_and_keeps_claim(coordinator, add_task, clock) -> None:
    task_id = add_task("finish me")
    coordinator.claim(task_id, "agent-1")
    clock.advance(minutes=30)

    task = coordinator.complete(task_id, "Implemented menu", "agent-1")

    assert task.status is TaskStatus.REVIEW
    assert task.claimed_by == "agent-1"
    assert task.claimed_at == BASE_TIME
    assert task.completed_at is None
    assert task.metadata["completionNotes"] == "Implemented menu"
    assert task.metadata["implementedBy"] == "agent-1"
    assert task.metadata["completedImplementation"] == clock().isoformat()


def test_soft_complete_requires_in_progress(coordinator, add_task) -> None:
    task_id = add_task("not started")
    with pytest.raises(InvalidTransitionError):
        coordinator.complete(task_id, "notes")


def test_soft_complete_by_other_actor_is_rejected(coordinator, add_task) -> None:
    task_id = add_task("mine")
    coordinator.claim(task_id, "agent-1")
    with pytest.raises(NotClaimantError):
        coordinator.complete(task_id, "notes", "agent-2")


def test_direct_complete_clears_claim(coordinator, add_task, clock) -> None:
    task_id = add_task("ship it")
    coordinator.claim(task_id, "agent-1")
    clock.advance(minutes=5)

    task = coordinator.complete_direct(task_id, "done", "agent-1")

    assert task.status is TaskStatus.COMPLETED
    assert task.claimed_by is None
    assert task.claimed_at is None
    assert task.completed_at == clock()


def test_direct_complete_by_title_from_pending(coordinator, add_task) -> None:
    add_task("quick fix")
    task = coordinator.complete_direct_by_title("quick fix", "trivial")
    assert task.status is TaskStatus.COMPLETED

    with pytest.raises(TaskNotFoundError):
        coordinator.complete_direct_by_title("quick fix")


def test_completed_task_cannot_be_completed_again(coordinator, add_task) -> None:
    task_id = add_task("closed", status="completed", completedAt=BASE_TIME)
    with pytest.raises(InvalidTransitionError):
        coordinator.complete_direct(task_id)


def test_manual_release_returns_task_to_pending(coordinator, add_task, clock) -> None:
    task_id = add_task("give up")
    coordinator.claim(task_id, "agent-1")
    clock.advance(minutes=10)

    task = coordinator.release(task_id, "agent-1")

    assert task.status is TaskStatus.PENDING
    assert task.claimed_by is None and task.claimed_at is None
    assert task.released_at == clock()
    assert task.metadata["previousClaimBy"] == "agent-1"
    assert task.metadata["releaseReason"] == "manual"


def test_stale_review_task_is_released(coordinator, add_task, collection, clock) -> None:
    task_id = add_task(
        "stale review",
        status="review",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=3),
        metadata={"completionNotes": "done"},
    )

    report = coordinator.release_stale()

    stored = collection.docs[task_id]
    assert stored["status"] == "pending"
    assert stored["claimedBy"] is None
    assert stored["claimedAt"] is None
    assert stored["releasedAt"] == clock()
    assert stored["metadata"]["completionNotes"] == "done"
    assert stored["metadata"]["releaseReason"] == "stale_review"
    assert stored["metadata"]["previousClaimBy"] == "agent-1"
    assert stored["metadata"]["hoursClaimed"] == 3.0
    assert report.released_count == 1
    assert report.released[0].task_id == task_id
    assert report.released[0].reason == "stale_review"


def test_stale_in_progress_task_is_released(coordinator, add_task, collection, clock) -> None:
    task_id = add_task(
        "stale claim",
        status="in_progress",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=2, minutes=30),
    )

    report = coordinator.release_stale()

    assert collection.docs[task_id]["status"] == "pending"
    assert report.released[0].reason == "stale_claim"
    assert report.released[0].hours_claimed == 2.5


def test_fresh_review_task_is_untouched(coordinator, add_task, collection, clock) -> None:
    task_id = add_task(
        "fresh review",
        status="review",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=1),
    )
    before = dict(collection.docs[task_id])
    version = collection.update_times[task_id]

    report = coordinator.release_stale()

    assert report.released_count == 0
    assert collection.docs[task_id] == before
    assert collection.update_times[task_id] == version


def test_sweep_is_idempotent(coordinator, add_task, collection, clock) -> None:
    task_id = add_task(
        "once",
        status="review",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=3),
    )
    assert coordinator.release_stale().released_count == 1
    version = collection.update_times[task_id]

    second = coordinator.release_stale()

    assert second.released_count == 0
    assert collection.update_times[task_id] == version


def test_sweep_honors_configured_statuses(store, add_task, collection, clock) -> None:
    coordinator = TaskCoordinator(store, stale_statuses=["review"])
    task_id = add_task(
        "in progress only",
        status="in_progress",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=5),
    )

    assert coordinator.release_stale().released_count == 0
    assert collection.docs[task_id]["status"] == "in_progress"


def test_sweep_skips_task_changed_mid_sweep(coordinator, add_task, collection, clock) -> None:
    task_id = add_task(
        "racing",
        status="in_progress",
        claimedBy="agent-1",
        claimedAt=clock() - timedelta(hours=3),
    )

    def agent_finishes(doc_id: str) -> None:
        collection.docs[doc_id]["status"] = "review"
        collection.write(doc_id, collection.docs[doc_id])

    collection.before_update = agent_finishes

    report = coordinator.release_stale()

    assert report.released_count == 0
    assert report.skipped == [task_id]
    assert collection.docs[task_id]["status"] == "review"
    assert collection.docs[task_id]["claimedBy"] == "agent-1"


def test_custom_threshold(store, add_task, clock) -> None:
    coordinator = TaskCoordinator(store, stale_after=timedelta(minutes=30))
    add_task("short", status="in_progress", claimedBy="a", claimedAt=clock() - timedelta(minutes=45))
    report = coordinator.release_stale()
    assert report.threshold_hours == 0.5
    assert report.released_count == 1


def test_concurrent_write_surfaces_as_conflict(coordinator, add_task, collection) -> None:
    task_id = add_task("busy", status="in_progress", claimedBy="agent-1", claimedAt=BASE_TIME)

    def someone_else_writes(doc_id: str) -> None:
        collection.write(doc_id, collection.docs[doc_id])

    collection.before_update = someone_else_writes

    with pytest.raises(ConcurrentUpdateError):
        coordinator.release(task_id, "agent-1")


def test_set_status_requires_admin(coordinator, add_task) -> None:
    task_id = add_task("guarded")
    with pytest.raises(AdminAuthorizationError):
        coordinator.set_status(task_id, "completed", admin="someone@gmail.com")


def test_set_status_follows_transition_table(coordinator, add_task) -> None:
    task_id = add_task("closed", status="completed", completedAt=BASE_TIME)

    with pytest.raises(InvalidTransitionError):
        coordinator.set_status(task_id, "pending", admin="owner@example.com")

    reopened = coordinator.set_status(task_id, "pending", admin="owner@example.com", force=True)
    assert reopened.status is TaskStatus.PENDING


def test_set_status_in_progress_claims_for_admin(coordinator, add_task, clock) -> None:
    task_id = add_task("admin picks up")

    task = coordinator.set_status(task_id, "in_progress", admin="Coach@ForceFitness.app")

    assert task.status is TaskStatus.IN_PROGRESS
    assert task.claimed_by == "coach@forcefitness.app"
    assert task.claimed_at == clock()


def test_set_status_released_clears_claim(coordinator, add_task, clock) -> None:
    task_id = add_task("unclaim", status="in_progress", claimedBy="agent-1", claimedAt=BASE_TIME)

    task = coordinator.set_status(task_id, "released", admin="owner@example.com")

    assert task.claimed_by is None
    assert task.released_at == clock()


def test_set_priority_and_delete(coordinator, add_task, collection) -> None:
    task_id = add_task("reprioritize")

    task = coordinator.set_priority(task_id, "urgent", admin="owner@example.com")
    assert task.priority is TaskPriority.URGENT
    assert collection.docs[task_id]["priority"] == "urgent"

    coordinator.delete(task_id, admin="owner@example.com")
    assert task_id not in collection.docs


def test_list_tasks_filters_and_orders_newest_first(coordinator, add_task) -> None:
    add_task("older nav", tags=["navigation"], createdAt=BASE_TIME - timedelta(days=3))
    add_task("newer nav", tags=["navigation"], priority="high", createdAt=BASE_TIME)
    add_task("meal plan", description="navigation link", status="completed", createdAt=BASE_TIME)

    assert [task.title for task in coordinator.list_tasks(search="navigation")] == [
        "newer nav",
        "meal plan",
        "older nav",
    ]
    assert [task.title for task in coordinator.list_tasks(status="pending")] == ["newer nav", "older nav"]
    assert [task.title for task in coordinator.list_tasks(priority="high")] == ["newer nav"]


def test_claimed_by_lists_active_claims(coordinator, add_task) -> None:
    first = add_task("one")
    second = add_task("two")
    coordinator.claim(first, "agent-1")
    coordinator.claim(second, "agent-2")

    assert [task.id for task in coordinator.claimed_by("agent-1")] == [first]


def test_create_many(coordinator) -> None:
    tasks = coordinator.create_many([TaskDraft(title="a"), TaskDraft(title="b", priority="urgent")])
    assert [task.status for task in tasks] == [TaskStatus.PENDING, TaskStatus.PENDING]
    assert coordinator.available()[0].title == "b"


def test_completed_is_terminal() -> None:
    assert ALLOWED_TRANSITIONS[TaskStatus.COMPLETED] == frozenset()


def test_list_tasks_tolerates_legacy_partial_claim(coordinator, add_task, collection) -> None:
    add_task("good")
    collection.document("legacy").set(
        {
            "title": "completed directly",
            "status": "completed",
            "claimedBy": "claude-ai-agent",
            "claimedAt": None,
            "createdAt": BASE_TIME,
        }
    )

    tasks = coordinator.list_tasks()

    assert {task.title for task in tasks} == {"good", "completed directly"}
    legacy = next(task for task in tasks if task.id == "legacy")
    assert legacy.claimed_by is None
