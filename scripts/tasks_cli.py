"""Claim, complete, release and seed tasks from the command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from force_tasks.admin import AdminAuthorizationError
from force_tasks.config import ForceTasksSettings
from force_tasks.coordinator import TaskCoordinator, TaskCoordinatorError
from force_tasks.server import build_store, configure_logging
from force_tasks.storage import FirestoreTaskStore, FirestoreUnavailableError, TaskStoreError
from force_tasks.sweeper import StaleClaimSweeper
from force_tasks.tasks import SeedLoadError, SeedLoader, TaskDraft
from force_tasks.tools import sweep_summary, task_summary

_FAILURES = (TaskCoordinatorError, TaskStoreError, AdminAuthorizationError, SeedLoadError, ValueError)


def load_store(settings: ForceTasksSettings) -> FirestoreTaskStore:
    try:
        store = build_store(settings)
        store.ping()
    except FirestoreUnavailableError as exc:
        print(f"Firestore unavailable: {exc}")
        raise SystemExit(1)
    return store


def load_coordinator(settings: ForceTasksSettings) -> TaskCoordinator:
    return TaskCoordinator.from_settings(settings, load_store(settings))


def _print_task(task, *, heading: str) -> None:
    print(heading)
    print(f"  id:       {task.id}")
    print(f"  title:    {task.title}")
    print(f"  status:   {task.status.value}")
    print(f"  priority: {task.priority.value}")
    print(f"  tags:     {', '.join(task.tags) or 'none'}")
    if task.claimed_by:
        print(f"  claimed:  {task.claimed_by} at {task.claimed_at.isoformat()}")
    if task.description:
        print("")
        print(task.description)


def _print_listing(tasks, as_json: bool) -> None:
    if as_json:
        print(json.dumps([task_summary(task) for task in tasks], indent=2))
        return
    if not tasks:
        print("No tasks found.")
        return
    for index, task in enumerate(tasks, start=1):
        claim = f" (claimed by {task.claimed_by})" if task.claimed_by else ""
        print(f"{index}. [{task.priority.value.upper()}] {task.title} <{task.status.value}>{claim}")
        print(f"   id={task.id} assignee={task.assignee.value}")


def cmd_list(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    tasks = coordinator.list_tasks(
        status=args.status, priority=args.priority, assignee=args.assignee, search=args.search
    )
    _print_listing(tasks, args.json)


def cmd_available(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    _print_listing(coordinator.available(args.assignee), args.json)


def cmd_claim(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    if args.next:
        task = coordinator.claim_next(args.agent, args.assignee)
    elif args.id:
        task = coordinator.claim(args.id, args.agent)
    elif args.title:
        task = coordinator.claim_by_title(args.title, args.agent)
    else:
        raise ValueError("Provide a task title, --id or --next")
    _print_task(task, heading="Claimed task:")


def cmd_complete(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    notes = args.notes or ""
    if args.id and args.title and not notes:
        # With --id the only positional is the notes.
        notes = args.title
    if args.id:
        task = (
            coordinator.complete_direct(args.id, notes, args.agent)
            if args.direct
            else coordinator.complete(args.id, notes, args.agent)
        )
    elif args.title:
        task = (
            coordinator.complete_direct_by_title(args.title, notes, args.agent)
            if args.direct
            else coordinator.complete_by_title(args.title, notes, args.agent)
        )
    else:
        raise ValueError("Provide a task title or --id")
    heading = "Task completed:" if args.direct else "Task moved to review:"
    _print_task(task, heading=heading)


def cmd_release(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    task = coordinator.release(args.id, args.agent)
    _print_task(task, heading="Released task:")


def cmd_sweep(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    sweeper = StaleClaimSweeper(coordinator, args.interval or settings.poll_interval_seconds)
    if args.watch:
        try:
            asyncio.run(sweeper.run(max_iterations=args.iterations))
        except KeyboardInterrupt:
            pass
        return

    report = sweeper.run_once()
    if args.json:
        print(json.dumps(sweep_summary(report), indent=2))
        return
    if not report.released:
        print(f"No stale tasks found (threshold {report.threshold_hours:g}h)")
    for entry in report.released:
        print(f"Released: {entry.title}")
        print(f"   claimed by: {entry.previous_claimant}")
        print(f"   held for:   {entry.hours_claimed:.1f} hours ({entry.reason})")
    for task_id in report.skipped:
        print(f"Skipped {task_id}: changed during sweep")
    if report.released:
        print(f"Released {report.released_count} stale tasks back to pending")


def cmd_create(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    draft = TaskDraft(
        title=args.title,
        description=args.description,
        priority=args.priority,
        assignee=args.assignee,
        tags=args.tag or [],
        created_by=args.created_by,
    )
    task = coordinator.create(draft)
    _print_task(task, heading="Created task:")


def cmd_seed(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    paths = [Path(path) for path in args.paths] if args.paths else list(settings.seed_paths)
    drafts = SeedLoader(paths).load_all()
    if not drafts:
        print("No seed tasks found.")
        return
    if args.dry_run:
        for draft in drafts:
            print(f"would create: [{draft.priority.value.upper()}] {draft.title}")
        return
    coordinator = load_coordinator(settings)
    tasks = coordinator.create_many(drafts)
    for task in tasks:
        print(f"created {task.id}: {task.title}")
    print(f"Created {len(tasks)} tasks")


def cmd_set_status(args: argparse.Namespace, settings: ForceTasksSettings) -> None:
    coordinator = load_coordinator(settings)
    task = coordinator.set_status(args.id, args.status, admin=args.admin, force=args.force)
    _print_task(task, heading="Updated task:")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Force Fitness task coordination")
    sub = parser.add_subparsers(dest="cmd")

    p_list = sub.add_parser("list", help="List tasks newest first")
    p_list.add_argument("--status")
    p_list.add_argument("--priority")
    p_list.add_argument("--assignee")
    p_list.add_argument("--search")
    p_list.add_argument("--json", action="store_true", help="Output JSON")
    p_list.set_defaults(func=cmd_list)

    p_available = sub.add_parser("available", help="List claimable tasks in priority order")
    p_available.add_argument("--assignee", default=None)
    p_available.add_argument("--json", action="store_true", help="Output JSON")
    p_available.set_defaults(func=cmd_available)

    p_claim = sub.add_parser("claim", help="Claim a task by title, id or priority order")
    p_claim.add_argument("title", nargs="?")
    p_claim.add_argument("--id")
    p_claim.add_argument("--next", action="store_true", help="Claim the highest-priority available task")
    p_claim.add_argument("--assignee", default="ai_agent", help="Assignee filter for --next")
    p_claim.add_argument("--agent", default=None, help="Claiming actor (defaults to FORCE_TASKS_AGENT_ID)")
    p_claim.set_defaults(func=cmd_claim)

    p_complete = sub.add_parser("complete", help="Move a task to review, or complete it with --direct")
    p_complete.add_argument("title", nargs="?")
    p_complete.add_argument("notes", nargs="?", default="")
    p_complete.add_argument("--id")
    p_complete.add_argument("--direct", action="store_true", help="Skip review and mark completed")
    p_complete.add_argument("--agent", default=None)
    p_complete.set_defaults(func=cmd_complete)

    p_release = sub.add_parser("release", help="Release a claimed task back to pending")
    p_release.add_argument("--id", required=True)
    p_release.add_argument("--agent", default=None)
    p_release.set_defaults(func=cmd_release)

    p_sweep = sub.add_parser("sweep", help="Release claims older than the stale threshold")
    p_sweep.add_argument("--watch", action="store_true", help="Keep sweeping on an interval")
    p_sweep.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    p_sweep.add_argument("--iterations", type=int, default=None, help="Stop after N sweeps in watch mode")
    p_sweep.add_argument("--json", action="store_true", help="Output JSON")
    p_sweep.set_defaults(func=cmd_sweep)

    p_create = sub.add_parser("create", help="Create a pending task")
    p_create.add_argument("title")
    p_create.add_argument("--description", default="")
    p_create.add_argument("--priority", default="medium", choices=["urgent", "high", "medium", "low"])
    p_create.add_argument("--assignee", default="ai_agent", choices=["ai_agent", "human", "any"])
    p_create.add_argument("--tag", action="append", help="Tag to attach (repeatable)")
    p_create.add_argument("--created-by", default="system")
    p_create.set_defaults(func=cmd_create)

    p_seed = sub.add_parser("seed", help="Create tasks from YAML seed files in one batch")
    p_seed.add_argument("paths", nargs="*", help="Seed files or directories (defaults to FORCE_TASKS_SEED_PATHS)")
    p_seed.add_argument("--dry-run", action="store_true")
    p_seed.set_defaults(func=cmd_seed)

    p_status = sub.add_parser("set-status", help="Admin: change a task's status")
    p_status.add_argument("--id", required=True)
    p_status.add_argument("status", choices=["pending", "in_progress", "review", "completed", "released"])
    p_status.add_argument("--admin", required=True, help="Admin email address")
    p_status.add_argument("--force", action="store_true", help="Bypass the transition table")
    p_status.set_defaults(func=cmd_set_status)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    try:
        settings = ForceTasksSettings()
        configure_logging(settings.log_level)
        args.func(args, settings)
    except _FAILURES as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
