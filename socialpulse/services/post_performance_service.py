import asyncio
from datetime import datetime
from typing import List, Optional, Tuple

import httpx
import pandas as pd
from pydantic import TypeAdapter

from socialpulse.schemas.dashboard import (
    BestPost,
    ContentTypePerformance,
    PostComparison,
    PostComparisonDelta,
    PostPerformance,
    PostTimeline,
    TimelineEntry,
)
from socialpulse.schemas.metrics import MetricKind, Sample, SampleQuery
from socialpulse.services.analytics_dashboard_service import engagement_total
from socialpulse.services.cache_service import MetricsCache, read_through
from socialpulse.services.frames import (
    engagement_of,
    round2,
    safe_pct,
    sample_engagement_rates,
    samples_to_frame,
    to_int,
    totals,
)
from socialpulse.services.post_directory import PostDetails, lookup_posts
from socialpulse.utils.dates import validate_range
from socialpulse.utils.errors import EntityNotFoundError
from socialpulse.utils.logger import logger

DEFAULT_CONTENT_TYPE = "text"

CONTENT_TYPES = TypeAdapter(List[ContentTypePerformance])


class PostPerformanceService:
    def __init__(self, sample_store, cache: Optional[MetricsCache] = None, post_directory=None):
        self.sample_store = sample_store
        self.cache = cache
        self.post_directory = post_directory

    async def _details(self, post_id: str) -> Optional[PostDetails]:
        if self.post_directory is None:
            return None
        try:
            return await self.post_directory.get_post(post_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Post lookup failed for {post_id}: {e}")
            return None

    async def _load(self, workspace_id: str, post_id: str) -> Tuple[List[Sample], Optional[PostDetails]]:
        """Samples for one post, oldest first, plus its directory record. Raises when neither exists."""
        samples, details = await asyncio.gather(
            self.sample_store.find(SampleQuery(workspace_id=workspace_id, post_id=post_id, kind=MetricKind.POST)),
            self._details(post_id),
        )
        if not samples and details is None:
            raise EntityNotFoundError(f"Post {post_id} not found")
        return samples, details

    async def get_post_performance(self, workspace_id: str, post_id: str) -> PostPerformance:
        logger.info(f"Getting metrics for post {post_id}")
        samples, details = await self._load(workspace_id, post_id)

        if not samples:
            return PostPerformance(
                post_id=post_id,
                platform_post_id=details.platform_post_id or "",
                platform=details.platform or "",
                content=details.content,
                published_at=details.published_at,
            )

        frame = samples_to_frame(samples)
        sums = totals(frame)
        engagement = engagement_total(sums)
        first = samples[0]

        views = frame["views"].dropna()
        completion = frame["completion_rate"].dropna()

        return PostPerformance(
            post_id=post_id,
            platform_post_id=(first.entity_ref.platform_post_id if first.entity_ref else None) or "",
            platform=first.platform,
            content=details.content if details else "",
            published_at=(details.published_at if details else None) or first.timestamp,
            likes=to_int(sums["likes"]),
            comments=to_int(sums["comments"]),
            shares=to_int(sums["shares"]),
            saves=to_int(sums["saves"]),
            total_engagement=to_int(engagement),
            reach=to_int(sums["reach"]),
            impressions=to_int(sums["impressions"]),
            engagement_rate=safe_pct(engagement, sums["reach"]),
            video_views=to_int(views.sum()) if not views.empty else None,
            video_completion_rate=round2(completion.mean()) if not completion.empty else None,
        )

    async def get_post_timeline(self, workspace_id: str, post_id: str) -> PostTimeline:
        logger.info(f"Getting performance timeline for post {post_id}")
        samples, _ = await self._load(workspace_id, post_id)
        if not samples:
            return PostTimeline(post_id=post_id)

        frame = samples_to_frame(samples)
        engagement = engagement_of(frame)
        rates = sample_engagement_rates(frame)
        flows = frame[["likes", "comments", "shares", "saves", "reach", "impressions"]].fillna(0)

        timeline = []
        for i in range(len(frame)):
            timeline.append(
                TimelineEntry(
                    timestamp=pd.Timestamp(frame["timestamp"].iloc[i]).to_pydatetime(),
                    likes=to_int(flows["likes"].iloc[i]),
                    comments=to_int(flows["comments"].iloc[i]),
                    shares=to_int(flows["shares"].iloc[i]),
                    saves=to_int(flows["saves"].iloc[i]),
                    engagement=to_int(engagement.iloc[i]),
                    reach=to_int(flows["reach"].iloc[i]),
                    impressions=to_int(flows["impressions"].iloc[i]),
                    engagement_rate=round2(rates.iloc[i]),
                )
            )

        # First sample wins ties for the peak
        peak = timeline[int(engagement.values.argmax())]
        first, last = timeline[0], timeline[-1]
        hours = (last.timestamp - first.timestamp).total_seconds() / 3600
        velocity = (last.engagement - first.engagement) / hours if hours > 0 else 0.0

        return PostTimeline(
            post_id=post_id,
            timeline=timeline,
            peak_engagement_time=peak.timestamp,
            engagement_velocity=round2(velocity),
        )

    async def compare_posts(self, workspace_id: str, post_id_1: str, post_id_2: str) -> PostComparison:
        logger.info(f"Comparing posts {post_id_1} and {post_id_2}")
        post1, post2 = await asyncio.gather(
            self.get_post_performance(workspace_id, post_id_1),
            self.get_post_performance(workspace_id, post_id_2),
        )
        return PostComparison(
            post1=post1,
            post2=post2,
            comparison=PostComparisonDelta(
                engagement_diff=post1.total_engagement - post2.total_engagement,
                engagement_rate_diff=round2(post1.engagement_rate - post2.engagement_rate),
                reach_diff=post1.reach - post2.reach,
                impressions_diff=post1.impressions - post2.impressions,
                likes_diff=post1.likes - post2.likes,
                comments_diff=post1.comments - post2.comments,
                shares_diff=post1.shares - post2.shares,
                saves_diff=post1.saves - post2.saves,
            ),
        )

    async def get_content_type_performance(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
        platforms: Optional[List[str]] = None,
    ) -> List[ContentTypePerformance]:
        start, end = validate_range(start, end)
        logger.info(f"Analyzing content type performance for workspace {workspace_id}")

        async def compute():
            samples = await self.sample_store.find(
                SampleQuery(
                    workspace_id=workspace_id,
                    platforms=platforms or None,
                    kind=MetricKind.POST,
                    require_post_id=True,
                    start=start,
                    end=end,
                )
            )
            return await self._content_types(samples_to_frame(samples))

        key = MetricsCache.dashboard_key("content-types", workspace_id, start, end, {"platforms": platforms})
        return await read_through(self.cache, key, compute, CONTENT_TYPES)

    async def _content_types(self, frame: pd.DataFrame) -> List[ContentTypePerformance]:
        if frame.empty:
            return []

        posts = []
        for post_id, group in frame.groupby("post_id", sort=False):
            sums = totals(group)
            engagement = engagement_total(sums)
            tagged = group["content_type"].dropna()
            posts.append(
                {
                    "post_id": post_id,
                    "content_type": tagged.iloc[-1] if not tagged.empty else None,
                    "engagement": engagement,
                    "reach": sums["reach"],
                    "impressions": sums["impressions"],
                    "engagement_rate": safe_pct(engagement, sums["reach"]),
                }
            )

        untagged = [p["post_id"] for p in posts if p["content_type"] is None]
        details = await lookup_posts(self.post_directory, untagged) if untagged else {}
        for p in posts:
            if p["content_type"] is None:
                info = details.get(p["post_id"])
                p["content_type"] = (info.content_type if info else None) or DEFAULT_CONTENT_TYPE

        per_post = pd.DataFrame(posts)
        results = []
        for content_type, group in per_post.groupby("content_type", sort=True):
            best = group.iloc[int(group["engagement"].values.argmax())]
            results.append(
                ContentTypePerformance(
                    content_type=content_type,
                    post_count=len(group),
                    avg_engagement=round2(group["engagement"].mean()),
                    avg_engagement_rate=round2(group["engagement_rate"].mean()),
                    avg_reach=round2(group["reach"].mean()),
                    avg_impressions=round2(group["impressions"].mean()),
                    total_engagement=to_int(group["engagement"].sum()),
                    total_reach=to_int(group["reach"].sum()),
                    best_performing_post=BestPost(
                        post_id=best["post_id"],
                        engagement=to_int(best["engagement"]),
                        engagement_rate=round2(best["engagement_rate"]),
                    ),
                )
            )
        return sorted(results, key=lambda r: r.avg_engagement_rate, reverse=True)
