# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
APScheduler wrapper for periodic realtime jobs.

Jobs are coroutines that emit through the Socket.IO server, so the scheduler
runs on the application's event loop (AsyncIOScheduler) instead of a
background thread.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Scheduler state enumeration."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class ScheduledJob:
    """Unified representation of a scheduled interval job."""

    job_id: str
    name: str
    interval_seconds: int
    next_run_time: Optional[datetime] = None


class RealtimeScheduler:
    """
    Interval scheduler for the deadline sweep and the due-date check.

    Job defaults match the rest of the backend: coalesce missed runs, never
    run two instances of the same job, and allow 60 seconds of misfire grace.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._state = SchedulerState.STOPPED
        self._pending: Dict[str, Dict[str, Any]] = {}

    def _create_scheduler(self) -> AsyncIOScheduler:
        return AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        name: Optional[str] = None,
        run_immediately: bool = False,
    ) -> None:
        """
        Register an interval job. Jobs added before start() are scheduled
        when the scheduler starts.
        """
        spec = {
            "func": func,
            "seconds": seconds,
            "name": name or job_id,
            "run_immediately": run_immediately,
        }
        self._pending[job_id] = spec
        if self._scheduler is not None and self._scheduler.running:
            self._schedule(job_id, spec)

    def _schedule(self, job_id: str, spec: Dict[str, Any]) -> None:
        kwargs: Dict[str, Any] = {}
        if spec["run_immediately"]:
            kwargs["next_run_time"] = datetime.now().astimezone()
        self._scheduler.add_job(
            spec["func"],
            trigger=IntervalTrigger(seconds=spec["seconds"]),
            id=job_id,
            name=spec["name"],
            replace_existing=True,
            **kwargs,
        )
        logger.info(
            f"[Scheduler] Added job {job_id} with interval {spec['seconds']}s"
        )

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self._state == SchedulerState.RUNNING:
            logger.warning("[Scheduler] Already running, skipping start")
            return

        if self._scheduler is None:
            self._scheduler = self._create_scheduler()

        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("[Scheduler] Scheduler started")

        for job_id, spec in self._pending.items():
            self._schedule(job_id, spec)

        self._state = SchedulerState.RUNNING

    def stop(self, wait: bool = False) -> None:
        if self._state == SchedulerState.STOPPED:
            logger.warning("[Scheduler] Already stopped, skipping stop")
            return

        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("[Scheduler] Scheduler stopped")

        self._scheduler = None
        self._state = SchedulerState.STOPPED

    def get_jobs(self) -> List[ScheduledJob]:
        if self._scheduler is None:
            return [
                ScheduledJob(job_id=job_id, name=spec["name"], interval_seconds=spec["seconds"])
                for job_id, spec in self._pending.items()
            ]
        jobs = []
        for job in self._scheduler.get_jobs():
            spec = self._pending.get(job.id, {})
            jobs.append(
                ScheduledJob(
                    job_id=job.id,
                    name=job.name,
                    interval_seconds=spec.get("seconds", 0),
                    next_run_time=job.next_run_time,
                )
            )
        return jobs
