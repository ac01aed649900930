import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from socialpulse.schemas.metrics import AggregationRunSummary, Period
from socialpulse.utils.dates import previous_month, start_of_week, utcnow
from socialpulse.utils.errors import InvalidQueryError

logger = logging.getLogger("scheduler")

# job -> (period aggregated, how a slot is labelled)
JOBS = {
    "hourly": (Period.DAILY, "%Y-%m-%dT%H"),
    "daily": (Period.DAILY, "%Y-%m-%d"),
    "weekly": (Period.WEEKLY, "%G-W%V"),
    "monthly": (Period.MONTHLY, "%Y-%m"),
}


def job_reference_date(job: str, now: datetime) -> datetime:
    """
    hourly refreshes today's daily bucket; the others close the period that
    just ended (yesterday, last week, last month).
    """
    if job == "hourly":
        return now
    if job == "daily":
        return now - timedelta(days=1)
    if job == "weekly":
        return start_of_week(now) - timedelta(days=1)
    if job == "monthly":
        return previous_month(now)
    raise InvalidQueryError(f"Unknown aggregation job: {job}")


async def run_job(aggregation, job: str, now: Optional[datetime] = None) -> AggregationRunSummary:
    if job not in JOBS:
        raise InvalidQueryError(f"Unknown aggregation job: {job}")
    now = now or utcnow()
    period, _ = JOBS[job]
    return await aggregation.aggregate_all_workspaces(period, job_reference_date(job, now))


class AggregationScheduler:
    def __init__(self, aggregation, interval_seconds: int = 60, clock=utcnow):
        self.aggregation = aggregation
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.is_running = False
        self._task = None
        self._last_slots: Dict[str, str] = {}

    def start(self):
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Aggregation scheduler started")

    def stop(self):
        self.is_running = False
        if self._task:
            self._task.cancel()
            logger.info("Aggregation scheduler stopped")

    async def _loop(self):
        while self.is_running:
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

    async def run_due_jobs(self, now: Optional[datetime] = None) -> Dict[str, AggregationRunSummary]:
        """
        Run every job whose current slot has not completed yet. A job that
        fails is retried on the next tick; the others are unaffected.
        """
        now = now or self.clock()
        results = {}
        for job, (_, slot_format) in JOBS.items():
            slot = now.strftime(slot_format)
            if self._last_slots.get(job) == slot:
                continue
            try:
                results[job] = await run_job(self.aggregation, job, now)
                self._last_slots[job] = slot
            except Exception as e:
                logger.error(f"Aggregation job {job} failed for slot {slot}: {e}", exc_info=True)
        return results
