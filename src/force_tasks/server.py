"""FastMCP server bootstrap for force-tasks."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .config import ForceTasksSettings, get_settings
from .coordinator import TaskCoordinator
from .storage import FirestoreTaskStore, FirestoreUnavailableError, TaskStoreError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for force-tasks processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_store(settings: ForceTasksSettings) -> FirestoreTaskStore:
    return FirestoreTaskStore(
        settings.tasks_collection,
        project_id=settings.project_id,
        credentials_info=settings.credentials_info(),
    )


def create_server(
    settings: Optional[ForceTasksSettings] = None,
    store: FirestoreTaskStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the task tools and status resource."""

    settings = settings or get_settings()

    store_metadata: dict[str, Any] = {
        "available": False,
        "project_id": settings.project_id,
        "collection": settings.tasks_collection,
        "error": None,
    }

    coordinator: TaskCoordinator | None = None
    try:
        store = store or build_store(settings)
        store.ping()
        coordinator = TaskCoordinator.from_settings(settings, store)
        store_metadata["available"] = True
    except FirestoreUnavailableError as exc:
        store_metadata["error"] = str(exc)

    server = FastMCP(
        name="Force Tasks",
        version=__version__,
        instructions=(
            "Coordinates Force Fitness work items stored in Firestore. Claim tasks in "
            "priority order, move them to review when done, and release claims you "
            "cannot finish. Claims older than the stale threshold are released automatically."
        ),
    )

    handles = register_tools(server, settings=settings, coordinator=coordinator)

    def status_payload() -> dict[str, Any]:
        status_counts: dict[str, int] = {}
        claimed = 0
        storage_error = store_metadata["error"]
        if coordinator is not None:
            try:
                for task in coordinator.list_tasks():
                    status_counts[task.status.value] = status_counts.get(task.status.value, 0) + 1
                    if task.is_claimed:
                        claimed += 1
            except TaskStoreError as exc:
                storage_error = str(exc)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "storage": {**store_metadata, "error": storage_error},
            "stale_claim_hours": settings.stale_claim_hours,
            "stale_statuses": list(settings.stale_statuses),
            "tasks": {
                "count": sum(status_counts.values()),
                "status_counts": status_counts,
                "claimed": claimed,
            },
        }

    @server.resource(
        "resource://force-tasks/status",
        name="force_tasks_status",
        description="Current task board counts and store connectivity.",
        mime_type="application/json",
    )
    def status_resource() -> str:
        """Return a JSON string summarizing the task board."""

        return json.dumps(status_payload())

    setattr(server, "coordinator", coordinator)
    setattr(server, "store_metadata", store_metadata)
    setattr(server, "status_payload", status_payload)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the force-tasks MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching force-tasks MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "store_available": getattr(server, "store_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
