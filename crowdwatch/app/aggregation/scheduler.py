"""
scheduler.py — Periodic jobs for the density engine.

═══════════════════════════════════════════════════════════════════════════
SCHEDULED JOBS
═══════════════════════════════════════════════════════════════════════════

    Job                 Interval     Work
    ─────────────────   ──────────   ─────────────────────────────────────
    aggregation         60 s         AggregationOrchestrator.run_cycle()
    alert_expiry        1 h          AlertService.deactivate_expired_alerts()

Each job runs in its own asyncio task inside the API process (started
and stopped by the app lifespan). A failing run is logged, counted and
forgotten: the loop sleeps until the next tick. Runs of the same job
never overlap because each loop awaits its run before sleeping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from crowdwatch.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of the last run of a scheduled job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScheduledJob:
    """A named coroutine run every ``interval_seconds``."""
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    status: JobStatus = JobStatus.PENDING
    runs: int = 0
    failures: int = 0
    last_started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "status": self.status.value,
            "runs": self.runs,
            "failures": self.failures,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_completed_at": (
                self.last_completed_at.isoformat() if self.last_completed_at else None
            ),
            "last_error": self.last_error,
        }


class ScheduledJobRunner:
    """
    Runs scheduled background jobs.

    Usage:
        runner = ScheduledJobRunner()
        runner.add_job("aggregation", 60, orchestrator.run_cycle)

        # Start scheduler
        await runner.start()

        # Stop scheduler
        await runner.stop()
    """

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add_job(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
    ) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError(f"interval for {name} must be positive")
        job = ScheduledJob(name=name, interval_seconds=interval_seconds, func=func)
        self._jobs[name] = job
        return job

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    def list_jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    async def run_job(self, job: ScheduledJob) -> bool:
        """Run ``job`` once; returns False if it raised."""
        job.status = JobStatus.RUNNING
        job.last_started_at = datetime.now(timezone.utc)
        job.runs += 1
        set_request_context(job=job.name, cycle_id=f"{job.name}-{job.runs}")
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.failures += 1
            job.last_error = str(e)
            logger.exception("Scheduled job %s failed: %s", job.name, e)
            return False
        finally:
            job.last_completed_at = datetime.now(timezone.utc)

        job.status = JobStatus.COMPLETED
        job.last_error = None
        return True

    async def _loop(self, job: ScheduledJob) -> None:
        while self._running:
            await self.run_job(job)
            await asyncio.sleep(job.interval_seconds)

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(job), name=f"job:{job.name}")
            for job in self._jobs.values()
        ]
        logger.info("Scheduled job runner started (%s)", ", ".join(self._jobs))

    async def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Scheduled job runner stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "jobs": [job.to_dict() for job in self._jobs.values()],
        }
