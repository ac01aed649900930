from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DashboardModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class KPIMetrics(DashboardModel):
    total_followers: int = 0
    follower_growth: int = 0
    follower_growth_rate: float = 0.0
    total_engagement: int = 0
    engagement_rate: float = 0.0
    engagement_growth: int = 0
    total_reach: int = 0
    reach_growth: int = 0
    total_impressions: int = 0
    impressions_growth: int = 0
    total_posts: int = 0
    posts_growth: int = 0
    avg_engagement_per_post: float = 0.0


class EngagementMetrics(DashboardModel):
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    total_saves: int = 0
    total_engagement: int = 0
    engagement_rate: float = 0.0
    likes_growth: int = 0
    comments_growth: int = 0
    shares_growth: int = 0
    saves_growth: int = 0


class ReachImpressions(DashboardModel):
    total_reach: int = 0
    reach_growth: int = 0
    total_impressions: int = 0
    impressions_growth: int = 0


class FollowerGrowthPoint(DashboardModel):
    date: str
    followers: int
    growth: int
    growth_rate: float


class PlatformBreakdown(DashboardModel):
    platform: str
    followers: int = 0
    engagement: int = 0
    reach: int = 0
    impressions: int = 0
    posts: int = 0
    engagement_rate: float = 0.0


class PostPerformance(DashboardModel):
    post_id: str
    platform_post_id: str = ""
    platform: str = ""
    content: str = ""
    published_at: Optional[datetime] = None
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0
    total_engagement: int = 0
    reach: int = 0
    impressions: int = 0
    engagement_rate: float = 0.0
    video_views: Optional[int] = None
    video_completion_rate: Optional[float] = None


class TimeSeriesMetrics(DashboardModel):
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0
    engagement: int = 0
    reach: int = 0
    impressions: int = 0
    followers: int = 0


class TimeSeriesPoint(DashboardModel):
    timestamp: str
    metrics: TimeSeriesMetrics


class TimelineEntry(DashboardModel):
    timestamp: datetime
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0
    engagement: int = 0
    reach: int = 0
    impressions: int = 0
    engagement_rate: float = 0.0


class PostTimeline(DashboardModel):
    post_id: str
    timeline: List[TimelineEntry] = []
    peak_engagement_time: Optional[datetime] = None
    engagement_velocity: float = 0.0


class PostComparisonDelta(DashboardModel):
    engagement_diff: int = 0
    engagement_rate_diff: float = 0.0
    reach_diff: int = 0
    impressions_diff: int = 0
    likes_diff: int = 0
    comments_diff: int = 0
    shares_diff: int = 0
    saves_diff: int = 0


class PostComparison(DashboardModel):
    post1: PostPerformance
    post2: PostPerformance
    comparison: PostComparisonDelta


class BestPost(DashboardModel):
    post_id: str
    engagement: int = 0
    engagement_rate: float = 0.0


class ContentTypePerformance(DashboardModel):
    content_type: str
    post_count: int = 0
    avg_engagement: float = 0.0
    avg_engagement_rate: float = 0.0
    avg_reach: float = 0.0
    avg_impressions: float = 0.0
    total_engagement: int = 0
    total_reach: int = 0
    best_performing_post: BestPost
