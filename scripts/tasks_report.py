"""Task board diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import timedelta

from force_tasks.config import ForceTasksSettings
from force_tasks.coordinator import TaskCoordinator
from force_tasks.report import build_report, render_report
from force_tasks.server import build_store
from force_tasks.storage import FirestoreTaskStore, FirestoreUnavailableError, TaskStoreError
from force_tasks.tasks import Task


def load_store(settings: ForceTasksSettings) -> FirestoreTaskStore:
    try:
        store = build_store(settings)
        store.ping()
    except FirestoreUnavailableError as exc:
        print(f"Firestore unavailable: {exc}")
        raise SystemExit(1)
    return store


def _fetch_tasks(store: FirestoreTaskStore) -> list[Task]:
    try:
        return [snapshot.task for snapshot in store.list_all()]
    except TaskStoreError as exc:
        print(f"Firestore request failed: {exc}")
        raise SystemExit(1)


def cmd_report(args: argparse.Namespace) -> None:
    settings = ForceTasksSettings()
    store = load_store(settings)
    tasks = _fetch_tasks(store)
    report = build_report(tasks, store.now(), stale_after=timedelta(hours=settings.stale_claim_hours))
    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(render_report(report))


def cmd_mine(args: argparse.Namespace) -> None:
    settings = ForceTasksSettings()
    coordinator = TaskCoordinator.from_settings(settings, load_store(settings))
    agent = args.agent or coordinator.default_actor
    try:
        tasks = coordinator.claimed_by(agent)
    except TaskStoreError as exc:
        print(f"Firestore request failed: {exc}")
        raise SystemExit(1)
    payload = [
        {
            "id": task.id,
            "title": task.title,
            "status": task.status.value,
            "claimed_at": task.claimed_at.isoformat() if task.claimed_at else None,
        }
        for task in tasks
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Force Fitness task board diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_report = sub.add_parser("report", help="Full task status report")
    p_report.add_argument("--json", action="store_true", help="Output JSON")
    p_report.set_defaults(func=cmd_report)

    p_mine = sub.add_parser("mine", help="Tasks currently held by an agent")
    p_mine.add_argument("--agent", default=None)
    p_mine.set_defaults(func=cmd_mine)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
