from datetime import datetime
from typing import List, Optional

import pandas as pd
from pydantic import TypeAdapter

from socialpulse.schemas.dashboard import (
    EngagementMetrics,
    FollowerGrowthPoint,
    KPIMetrics,
    PlatformBreakdown,
    PostPerformance,
    ReachImpressions,
    TimeSeriesMetrics,
    TimeSeriesPoint,
)
from socialpulse.schemas.metrics import (
    ENGAGEMENT_FIELDS,
    AggregatedBucket,
    Granularity,
    MetricKind,
    Period,
    Sample,
    SampleQuery,
)
from socialpulse.services.cache_service import MetricsCache, read_through
from socialpulse.services.frames import (
    bucket_followers,
    counters,
    engagement_of,
    followers_by_account,
    latest_followers,
    post_count,
    round2,
    safe_pct,
    samples_to_frame,
    to_int,
    totals,
    with_buckets,
)
from socialpulse.services.post_directory import lookup_posts
from socialpulse.utils.dates import validate_range
from socialpulse.utils.errors import InvalidQueryError
from socialpulse.utils.logger import logger

SORT_KEYS = {
    "engagement": "total_engagement",
    "reach": "reach",
    "impressions": "impressions",
    "likes": "likes",
    "comments": "comments",
}

SAMPLES = TypeAdapter(List[Sample])
BUCKETS = TypeAdapter(List[AggregatedBucket])
KPIS = TypeAdapter(KPIMetrics)
ENGAGEMENT = TypeAdapter(EngagementMetrics)
FOLLOWER_SERIES = TypeAdapter(List[FollowerGrowthPoint])
BREAKDOWN = TypeAdapter(List[PlatformBreakdown])
TOP_POSTS = TypeAdapter(List[PostPerformance])
TIME_SERIES = TypeAdapter(List[TimeSeriesPoint])


def parse_granularity(value) -> Granularity:
    try:
        return Granularity(value)
    except ValueError:
        raise InvalidQueryError(f"Unsupported granularity: {value}")


def engagement_total(values: dict) -> float:
    return sum(values[f] for f in ENGAGEMENT_FIELDS)


class AnalyticsDashboardService:
    """
    Dashboard-facing numbers derived from raw samples: overview KPIs with
    previous-period deltas, engagement breakdown, follower growth, platform
    breakdown, top posts and bucketed time series.
    """

    def __init__(self, sample_store, aggregate_store=None, cache: Optional[MetricsCache] = None, post_directory=None):
        self.sample_store = sample_store
        self.aggregate_store = aggregate_store
        self.cache = cache
        self.post_directory = post_directory

    async def _frame(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
        end_inclusive: bool = True,
        **filters,
    ) -> pd.DataFrame:
        samples = await self.sample_store.find(
            SampleQuery(
                workspace_id=workspace_id,
                platforms=platforms or None,
                account_ids=account_ids or None,
                start=start,
                end=end,
                end_inclusive=end_inclusive,
                **filters,
            )
        )
        return samples_to_frame(samples)

    async def _previous_frame(self, workspace_id, start, end, platforms, account_ids) -> pd.DataFrame:
        """[start - (end - start), start): the preceding window of equal length."""
        delta = end - start
        return await self._frame(workspace_id, start - delta, start, platforms, account_ids, end_inclusive=False)

    # ---- raw read-through queries ----------------------------------------

    async def get_workspace_metrics(self, workspace_id: str, start: datetime, end: datetime) -> List[Sample]:
        start, end = validate_range(start, end)

        async def compute():
            return await self.sample_store.find(
                SampleQuery(workspace_id=workspace_id, start=start, end=end, newest_first=True)
            )

        return await read_through(self.cache, MetricsCache.key("workspace", workspace_id, start, end), compute, SAMPLES)

    async def get_account_metrics(self, account_id: str, start: datetime, end: datetime) -> List[Sample]:
        start, end = validate_range(start, end)

        async def compute():
            return await self.sample_store.find(
                SampleQuery(account_ids=[account_id], start=start, end=end, newest_first=True)
            )

        return await read_through(self.cache, MetricsCache.key("account", account_id, start, end), compute, SAMPLES)

    async def get_post_metrics(self, post_id: str) -> List[Sample]:
        async def compute():
            return await self.sample_store.find(
                SampleQuery(post_id=post_id, kind=MetricKind.POST, newest_first=True)
            )

        return await read_through(self.cache, MetricsCache.key("post", post_id), compute, SAMPLES)

    async def get_aggregated_metrics(
        self, workspace_id: str, period: Period, start: datetime, end: datetime
    ) -> List[AggregatedBucket]:
        start, end = validate_range(start, end)
        period = Period(period)
        if self.aggregate_store is None:
            raise InvalidQueryError("Aggregated metrics are not available")

        async def compute():
            return await self.aggregate_store.find(workspace_id, period, start, end)

        key = MetricsCache.key("aggregated", workspace_id, period.value, start, end)
        return await read_through(self.cache, key, compute, BUCKETS, long_lived=True)

    # ---- KPIs -------------------------------------------------------------

    async def get_overview_kpis(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
    ) -> KPIMetrics:
        start, end = validate_range(start, end)
        logger.info(f"Getting overview KPIs for workspace {workspace_id}")

        async def compute():
            current = await self._frame(workspace_id, start, end, platforms, account_ids)
            previous = await self._previous_frame(workspace_id, start, end, platforms, account_ids)
            return self._overview(current, previous)

        key = MetricsCache.dashboard_key(
            "overview", workspace_id, start, end, {"platforms": platforms, "accounts": account_ids}
        )
        return await read_through(self.cache, key, compute, KPIS)

    @staticmethod
    def _overview(current: pd.DataFrame, previous: pd.DataFrame) -> KPIMetrics:
        cur, prev = totals(current), totals(previous)
        total_engagement = engagement_total(cur)
        previous_engagement = engagement_total(prev)

        # Latest per account now vs earliest per account in the previous window;
        # accounts with nothing earlier compare against themselves.
        current_followers = followers_by_account(current)
        earliest_previous = followers_by_account(previous, first=True)
        total_followers = sum(current_followers.values())
        previous_followers = sum(earliest_previous.get(k, v) for k, v in current_followers.items())
        follower_growth = total_followers - previous_followers

        total_posts = post_count(current)

        return KPIMetrics(
            total_followers=to_int(total_followers),
            follower_growth=to_int(follower_growth),
            follower_growth_rate=safe_pct(follower_growth, previous_followers),
            total_engagement=to_int(total_engagement),
            engagement_rate=safe_pct(total_engagement, cur["reach"]),
            engagement_growth=to_int(total_engagement - previous_engagement),
            total_reach=to_int(cur["reach"]),
            reach_growth=to_int(cur["reach"] - prev["reach"]),
            total_impressions=to_int(cur["impressions"]),
            impressions_growth=to_int(cur["impressions"] - prev["impressions"]),
            total_posts=total_posts,
            posts_growth=total_posts - post_count(previous),
            avg_engagement_per_post=round2(total_engagement / total_posts) if total_posts else 0.0,
        )

    async def get_engagement_metrics(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
    ) -> EngagementMetrics:
        start, end = validate_range(start, end)
        logger.info(f"Getting engagement metrics for workspace {workspace_id}")

        async def compute():
            cur = totals(await self._frame(workspace_id, start, end, platforms, account_ids))
            prev = totals(await self._previous_frame(workspace_id, start, end, platforms, account_ids))
            total_engagement = engagement_total(cur)
            return EngagementMetrics(
                total_likes=to_int(cur["likes"]),
                total_comments=to_int(cur["comments"]),
                total_shares=to_int(cur["shares"]),
                total_saves=to_int(cur["saves"]),
                total_engagement=to_int(total_engagement),
                engagement_rate=safe_pct(total_engagement, cur["reach"]),
                likes_growth=to_int(cur["likes"] - prev["likes"]),
                comments_growth=to_int(cur["comments"] - prev["comments"]),
                shares_growth=to_int(cur["shares"] - prev["shares"]),
                saves_growth=to_int(cur["saves"] - prev["saves"]),
            )

        key = MetricsCache.dashboard_key(
            "engagement", workspace_id, start, end, {"platforms": platforms, "accounts": account_ids}
        )
        return await read_through(self.cache, key, compute, ENGAGEMENT)

    async def get_reach_and_impressions(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
    ) -> ReachImpressions:
        kpis = await self.get_overview_kpis(workspace_id, start, end, platforms, account_ids)
        return ReachImpressions(
            total_reach=kpis.total_reach,
            reach_growth=kpis.reach_growth,
            total_impressions=kpis.total_impressions,
            impressions_growth=kpis.impressions_growth,
        )

    async def get_follower_growth(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.DAILY,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
    ) -> List[FollowerGrowthPoint]:
        start, end = validate_range(start, end)
        granularity = parse_granularity(granularity)
        logger.info(f"Getting follower growth for workspace {workspace_id}")

        async def compute():
            frame = await self._frame(workspace_id, start, end, platforms, account_ids, kind=MetricKind.ACCOUNT)
            if frame.empty:
                return []
            framed = with_buckets(frame, granularity)
            followers = bucket_followers(framed)

            points = []
            previous = None
            for label in sorted(framed["bucket"].unique()):
                value = followers.get(label)
                count = to_int(value) if value is not None else 0
                # Bucket 0 has no predecessor inside the window; buckets without a
                # follower reading report no growth rather than a fake drop.
                if previous is not None and value is not None:
                    growth = count - previous
                    rate = safe_pct(growth, previous)
                else:
                    growth, rate = 0, 0.0
                points.append(FollowerGrowthPoint(date=label, followers=count, growth=growth, growth_rate=rate))
                if value is not None:
                    previous = count
            return points

        key = MetricsCache.dashboard_key(
            "followers",
            workspace_id,
            start,
            end,
            {"platforms": platforms, "accounts": account_ids},
            granularity.value,
        )
        return await read_through(self.cache, key, compute, FOLLOWER_SERIES)

    async def get_platform_breakdown(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        account_ids: Optional[List[str]] = None,
    ) -> List[PlatformBreakdown]:
        start, end = validate_range(start, end)
        logger.info(f"Getting platform breakdown for workspace {workspace_id}")

        async def compute():
            frame = await self._frame(workspace_id, start, end, account_ids=account_ids)
            if frame.empty:
                return []

            rows = []
            for platform, group in frame.groupby("platform", sort=True):
                sums = totals(group)
                engagement = engagement_total(sums)
                rows.append(
                    PlatformBreakdown(
                        platform=platform,
                        followers=to_int(latest_followers(group)),
                        engagement=to_int(engagement),
                        reach=to_int(sums["reach"]),
                        impressions=to_int(sums["impressions"]),
                        posts=post_count(group),
                        engagement_rate=safe_pct(engagement, sums["reach"]),
                    )
                )
            return sorted(rows, key=lambda r: r.reach, reverse=True)

        key = MetricsCache.dashboard_key("platforms", workspace_id, start, end, {"accounts": account_ids})
        return await read_through(self.cache, key, compute, BREAKDOWN)

    async def get_top_performing_posts(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        sort_by: str = "engagement",
        limit: int = 10,
        platforms: Optional[List[str]] = None,
    ) -> List[PostPerformance]:
        start, end = validate_range(start, end)
        if sort_by not in SORT_KEYS:
            raise InvalidQueryError(f"Unsupported sortBy: {sort_by}. Expected one of {', '.join(SORT_KEYS)}")
        if limit < 1:
            raise InvalidQueryError("limit must be at least 1")
        logger.info(f"Getting top performing posts for workspace {workspace_id}")

        async def compute():
            frame = await self._frame(
                workspace_id, start, end, platforms, kind=MetricKind.POST, require_post_id=True
            )
            posts = self.rank_posts(frame, sort_by, limit)
            return await self._decorate(posts)

        key = MetricsCache.dashboard_key(
            f"top-posts-{sort_by}-{limit}", workspace_id, start, end, {"platforms": platforms}
        )
        return await read_through(self.cache, key, compute, TOP_POSTS)

    @staticmethod
    def rank_posts(frame: pd.DataFrame, sort_by: str, limit: int) -> List[PostPerformance]:
        """
        Sum each (post, platform post, platform) group and order by `sort_by`
        descending. Equal keys keep first-seen group order.
        """
        if frame.empty:
            return []

        frame = frame.assign(platform_post_id=frame["platform_post_id"].fillna(""))
        posts = []
        for (post_id, platform_post_id, platform), group in frame.groupby(
            ["post_id", "platform_post_id", "platform"], sort=False
        ):
            sums = totals(group)
            engagement = engagement_total(sums)
            posts.append(
                PostPerformance(
                    post_id=post_id,
                    platform_post_id=platform_post_id,
                    platform=platform,
                    published_at=pd.Timestamp(group["timestamp"].iloc[-1]).to_pydatetime(),
                    likes=to_int(sums["likes"]),
                    comments=to_int(sums["comments"]),
                    shares=to_int(sums["shares"]),
                    saves=to_int(sums["saves"]),
                    total_engagement=to_int(engagement),
                    reach=to_int(sums["reach"]),
                    impressions=to_int(sums["impressions"]),
                    engagement_rate=safe_pct(engagement, sums["reach"]),
                )
            )

        field = SORT_KEYS[sort_by]
        # sorted() is stable, also with reverse=True
        return sorted(posts, key=lambda p: getattr(p, field), reverse=True)[:limit]

    async def _decorate(self, posts: List[PostPerformance]) -> List[PostPerformance]:
        details = await lookup_posts(self.post_directory, [p.post_id for p in posts])
        if not details:
            return posts
        decorated = []
        for post in posts:
            info = details.get(post.post_id)
            if info is None:
                decorated.append(post)
                continue
            decorated.append(
                post.model_copy(
                    update={
                        "content": info.content,
                        "published_at": info.published_at or post.published_at,
                    }
                )
            )
        return decorated

    async def get_time_series_data(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.DAILY,
        platforms: Optional[List[str]] = None,
        account_ids: Optional[List[str]] = None,
    ) -> List[TimeSeriesPoint]:
        start, end = validate_range(start, end)
        granularity = parse_granularity(granularity)
        logger.info(f"Getting time-series data for workspace {workspace_id}")

        async def compute():
            frame = await self._frame(workspace_id, start, end, platforms, account_ids)
            return self.bucket_series(frame, granularity)

        key = MetricsCache.dashboard_key(
            "timeseries",
            workspace_id,
            start,
            end,
            {"platforms": platforms, "accounts": account_ids},
            granularity.value,
        )
        return await read_through(self.cache, key, compute, TIME_SERIES)

    @staticmethod
    def bucket_series(frame: pd.DataFrame, granularity: Granularity) -> List[TimeSeriesPoint]:
        """Flow metrics summed per bucket, followers from the last reading per account."""
        if frame.empty:
            return []

        framed = with_buckets(frame, granularity)
        flows = counters(framed, ENGAGEMENT_FIELDS + ["reach", "impressions"])
        flows["engagement"] = engagement_of(framed)
        flows["bucket"] = framed["bucket"]
        grouped = flows.groupby("bucket", sort=True).sum()
        followers = bucket_followers(framed)

        points = []
        for label, row in grouped.iterrows():
            points.append(
                TimeSeriesPoint(
                    timestamp=label,
                    metrics=TimeSeriesMetrics(
                        likes=to_int(row["likes"]),
                        comments=to_int(row["comments"]),
                        shares=to_int(row["shares"]),
                        saves=to_int(row["saves"]),
                        engagement=to_int(row["engagement"]),
                        reach=to_int(row["reach"]),
                        impressions=to_int(row["impressions"]),
                        followers=to_int(followers.get(label, 0)),
                    ),
                )
            )
        return points

    async def invalidate_cache(self, scope: str, scope_id: str) -> int:
        """Drop cached results for one workspace, account or post."""
        if self.cache is None:
            return 0
        if scope == "workspace":
            return await self.cache.invalidate_workspace(scope_id)
        if scope == "account":
            return await self.cache.invalidate_account(scope_id)
        if scope == "post":
            return await self.cache.invalidate_post(scope_id)
        raise InvalidQueryError(f"Unsupported cache scope: {scope}")
