"""Background jobs for the smart inventory core.

One :class:`InventoryScheduler` is built in the application lifespan. Each job
is an asyncio task that sleeps until its next fire time, runs one tick on a
fresh session and goes back to sleep. Ticks are shielded, so stopping the
scheduler cancels future runs but lets a running tick finish.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import Enum as PyEnum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartstock.config import settings
from smartstock.services.auto_reorder import process_auto_reorders
from smartstock.services.demand_forecaster import run_demand_forecasting
from smartstock.services.estimator import Estimator
from smartstock.services.inventory_sync import run_data_maintenance, validate_all_inventory
from smartstock.services.sellout_prevention import generate_sellout_risk_report

logger = logging.getLogger(__name__)

Job = Callable[[AsyncSession], Awaitable[object]]

HOUR = 3600


class JobState(str, PyEnum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RUNNING = "running"


def seconds_until(hour: int, now: datetime | None = None) -> float:
    """Seconds from ``now`` to the next ``hour``:00 local time."""
    now = now or datetime.now()
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now.hour >= hour:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class InventoryScheduler:
    def __init__(self, session_factory: async_sessionmaker, estimator: Estimator | None = None):
        self.session_factory = session_factory
        self.estimator = estimator
        self._tasks: dict[str, asyncio.Task] = {}
        self._states: dict[str, JobState] = {}
        self._ticks: set[asyncio.Task] = set()

    @property
    def jobs(self) -> list[str]:
        return sorted(self._tasks)

    def state(self, name: str) -> JobState:
        return self._states.get(name, JobState.UNSCHEDULED)

    def schedule_every(self, name: str, interval_seconds: float, job: Job) -> None:
        self._start(name, job, lambda: interval_seconds)
        logger.info("Job %s scheduled to run every %.1f hours", name, interval_seconds / HOUR)

    def schedule_daily_at(self, name: str, hour: int, job: Job) -> None:
        self._start(name, job, lambda: seconds_until(hour))
        logger.info(
            "Job %s scheduled to run daily at %02d:00. Next run in %.1f hours",
            name, hour, seconds_until(hour) / HOUR,
        )

    def initialize(self) -> None:
        """Schedule every inventory job, replacing any already registered."""
        self.schedule_every(
            "demand_forecasting",
            settings.FORECAST_INTERVAL_HOURS * HOUR,
            lambda db: run_demand_forecasting(db, self.estimator),
        )
        self.schedule_every("auto_reorders", settings.AUTO_REORDER_INTERVAL_HOURS * HOUR, process_auto_reorders)
        self.schedule_daily_at("data_maintenance", settings.MAINTENANCE_HOUR, run_data_maintenance)
        self.schedule_daily_at("inventory_reconciliation", settings.RECONCILIATION_HOUR, validate_all_inventory)
        self.schedule_daily_at("sellout_prevention", settings.SELLOUT_REPORT_HOUR, generate_sellout_risk_report)
        logger.info("All smart inventory scheduled jobs initialized")

    async def stop_all(self) -> None:
        tasks = list(self._tasks.items())
        self._tasks.clear()
        for name, task in tasks:
            task.cancel()
            self._states[name] = JobState.UNSCHEDULED
            logger.info("Stopped scheduled job: %s", name)
        await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)

    async def drain(self) -> None:
        """Wait for ticks that were already running when the jobs were stopped."""
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)

    def _start(self, name: str, job: Job, next_delay: Callable[[], float]) -> None:
        existing = self._tasks.pop(name, None)
        if existing:
            existing.cancel()
        self._states[name] = JobState.SCHEDULED
        self._tasks[name] = asyncio.create_task(self._loop(name, job, next_delay), name=f"scheduler:{name}")

    async def _loop(self, name: str, job: Job, next_delay: Callable[[], float]) -> None:
        while True:
            await asyncio.sleep(next_delay())
            self._states[name] = JobState.RUNNING
            tick = asyncio.ensure_future(self._run_tick(name, job))
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.shield(tick)
            self._states[name] = JobState.SCHEDULED

    async def _run_tick(self, name: str, job: Job) -> None:
        logger.info("Running scheduled job %s", name)
        try:
            async with self.session_factory() as db:
                result = await job(db)
        except Exception:
            logger.exception("Scheduled job %s failed", name)
            return
        logger.info("Scheduled job %s completed: %s", name, result)
