"""Scheduled release of stale task claims."""

from __future__ import annotations

import asyncio
import logging

from .coordinator import SweepReport, TaskCoordinator
from .storage import TaskStoreError

logger = logging.getLogger(__name__)


class StaleClaimSweeper:
    """Run the stale-claim sweep once or on a fixed interval."""

    def __init__(self, coordinator: TaskCoordinator, interval_seconds: float = 15.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._coordinator = coordinator
        self._interval = interval_seconds
        self._reports: list[SweepReport] = []

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def reports(self) -> list[SweepReport]:
        return list(self._reports)

    def run_once(self) -> SweepReport:
        report = self._coordinator.release_stale()
        self._reports.append(report)
        logger.info(
            "Stale claim sweep finished",
            extra={
                "released": report.released_count,
                "skipped": len(report.skipped),
                "threshold_hours": report.threshold_hours,
            },
        )
        return report

    async def run(
        self,
        *,
        stop_event: asyncio.Event | None = None,
        max_iterations: int | None = None,
    ) -> int:
        """Sweep every interval until ``stop_event`` is set; returns the number of sweeps run.

        Store failures are logged and the next tick proceeds as usual.
        """

        stop_event = stop_event or asyncio.Event()
        iterations = 0
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except TaskStoreError as exc:
                logger.error("Stale claim sweep failed", extra={"error": str(exc)})
            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
        return iterations


__all__ = ["StaleClaimSweeper"]
