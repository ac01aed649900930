import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pandas as pd

from socialpulse.schemas.metrics import (
    AggregatedBucket,
    AggregatedMetrics,
    AggregationRunSummary,
    Period,
    SampleQuery,
)
from socialpulse.services.frames import (
    counters,
    post_count,
    round2,
    safe_pct,
    sample_engagement_rates,
    samples_to_frame,
    to_int,
)
from socialpulse.utils.dates import add_month, ensure_utc, start_of_day, start_of_month, start_of_week
from socialpulse.utils.errors import InvalidQueryError
from socialpulse.utils.logger import logger


def period_window(period: Period, reference_date: datetime) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC window of the period containing reference_date."""
    reference_date = ensure_utc(reference_date)
    if period == Period.DAILY:
        start = start_of_day(reference_date)
        return start, start + timedelta(days=1)
    if period == Period.WEEKLY:
        start = start_of_week(reference_date)
        return start, start + timedelta(days=7)
    if period == Period.MONTHLY:
        start = start_of_month(reference_date)
        return start, add_month(start)
    raise InvalidQueryError(f"Unsupported period: {period}")


def summarize_group(group: pd.DataFrame) -> AggregatedMetrics:
    """Roll one (account, platform) slice of a window into bucket values."""
    flows = counters(group)
    totals = flows.sum()
    likes = flows["likes"]

    rates = sample_engagement_rates(group).dropna()

    followers = group["followers"].dropna()
    follower_growth = 0
    follower_growth_rate = 0.0
    if len(followers) >= 2:
        first, last = float(followers.iloc[0]), float(followers.iloc[-1])
        follower_growth = to_int(last - first)
        follower_growth_rate = safe_pct(last - first, first)

    return AggregatedMetrics(
        total_likes=to_int(totals["likes"]),
        total_comments=to_int(totals["comments"]),
        total_shares=to_int(totals["shares"]),
        total_saves=to_int(totals["saves"]),
        total_impressions=to_int(totals["impressions"]),
        total_reach=to_int(totals["reach"]),
        total_views=to_int(totals["views"]),
        avg_engagement_rate=round2(rates.mean()) if not rates.empty else 0.0,
        avg_likes=round2(likes.mean()),
        avg_comments=round2(flows["comments"].mean()),
        avg_shares=round2(flows["shares"].mean()),
        max_likes=to_int(likes.max()),
        min_likes=to_int(likes.min()),
        max_engagement_rate=round2(rates.max()) if not rates.empty else 0.0,
        min_engagement_rate=round2(rates.min()) if not rates.empty else 0.0,
        post_count=post_count(group),
        follower_growth=follower_growth,
        follower_growth_rate=follower_growth_rate,
    )


def aggregate_frame(
    workspace_id: str,
    period: Period,
    start: datetime,
    end: datetime,
    frame: pd.DataFrame,
) -> List[AggregatedBucket]:
    """Pure function of the sample window: same input, same buckets."""
    if frame.empty:
        return []

    buckets = []
    for (account_id, platform), group in frame.groupby(["account_id", "platform"], sort=True):
        buckets.append(
            AggregatedBucket(
                workspace_id=workspace_id,
                account_id=account_id,
                platform=platform,
                period=period,
                period_start=start,
                period_end=end,
                aggregated_metrics=summarize_group(group),
            )
        )
    return buckets


class MetricsAggregationService:
    def __init__(self, sample_store, aggregate_store, cache=None, batch_size: int = 10):
        self.sample_store = sample_store
        self.aggregate_store = aggregate_store
        self.cache = cache
        self.batch_size = max(1, batch_size)

    async def aggregate(self, workspace_id: str, period: Period, reference_date: datetime) -> List[AggregatedBucket]:
        """
        Recompute and upsert every bucket of one workspace for the period
        containing reference_date. Safe to re-run.
        """
        period = Period(period)
        start, end = period_window(period, reference_date)
        logger.info(f"Aggregating {period.value} metrics for workspace {workspace_id} ({start.isoformat()})")

        samples = await self.sample_store.find(
            SampleQuery(workspace_id=workspace_id, start=start, end=end, end_inclusive=False)
        )
        buckets = aggregate_frame(workspace_id, period, start, end, samples_to_frame(samples))

        written = []
        for bucket in buckets:
            try:
                await self.aggregate_store.upsert(bucket)
                written.append(bucket)
            except Exception as e:
                # per-account isolation
                logger.error(
                    f"Failed to store {period.value} bucket for account {bucket.account_id} "
                    f"in workspace {workspace_id}: {e}",
                    exc_info=True,
                )

        if self.cache is not None:
            await self.cache.invalidate_aggregated(workspace_id)

        logger.info(f"Completed {period.value} aggregation for workspace {workspace_id}: {len(written)} buckets")
        return written

    async def aggregate_daily(self, workspace_id: str, date: datetime) -> List[AggregatedBucket]:
        return await self.aggregate(workspace_id, Period.DAILY, date)

    async def aggregate_weekly(self, workspace_id: str, week_of: datetime) -> List[AggregatedBucket]:
        return await self.aggregate(workspace_id, Period.WEEKLY, week_of)

    async def aggregate_monthly(self, workspace_id: str, month_of: datetime) -> List[AggregatedBucket]:
        return await self.aggregate(workspace_id, Period.MONTHLY, month_of)

    async def aggregate_all_workspaces(
        self,
        period: Period,
        reference_date: datetime,
        workspace_ids: Optional[List[str]] = None,
    ) -> AggregationRunSummary:
        """
        Sweep workspaces in batches of `batch_size`. A failing workspace is
        logged and recorded in the summary; the sweep carries on.
        """
        period = Period(period)
        if workspace_ids is None:
            workspace_ids = await self.sample_store.workspace_ids()

        summary = AggregationRunSummary(period=period, reference_date=ensure_utc(reference_date))
        logger.info(f"Starting {period.value} aggregation for {len(workspace_ids)} workspaces")

        for i in range(0, len(workspace_ids), self.batch_size):
            batch = workspace_ids[i:i + self.batch_size]
            results = await asyncio.gather(
                *(self.aggregate(ws, period, reference_date) for ws in batch),
                return_exceptions=True,
            )
            for workspace_id, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(
                        f"Failed to aggregate {period.value} metrics for workspace {workspace_id}: {result}"
                    )
                    summary.failed[workspace_id] = str(result)
                else:
                    summary.succeeded.append(workspace_id)
                    summary.buckets_written += len(result)

        logger.info(
            f"Completed {period.value} aggregation: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed"
        )
        return summary
