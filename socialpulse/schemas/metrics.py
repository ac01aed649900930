from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from socialpulse.utils.dates import ensure_utc


class MetricKind(str, Enum):
    ACCOUNT = "account"
    POST = "post"


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Granularity(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Flow counters are summed inside a bucket; follower-like values take the last sample.
ENGAGEMENT_FIELDS = ["likes", "comments", "shares", "saves"]
SUM_FIELDS = ENGAGEMENT_FIELDS + ["impressions", "reach", "views"]
LAST_VALUE_FIELDS = ["followers", "following"]


class SampleMetrics(BaseModel):
    """Sparse per-sample counters. Anything absent reads as zero downstream."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    # Engagement
    likes: Optional[int] = None
    comments: Optional[int] = None
    shares: Optional[int] = None
    saves: Optional[int] = None

    # Reach
    impressions: Optional[int] = None
    reach: Optional[int] = None

    # Followers
    followers: Optional[int] = None
    following: Optional[int] = None

    # Video / story
    views: Optional[int] = None
    watch_time: Optional[float] = Field(None, alias="watchTime")
    completion_rate: Optional[float] = Field(None, alias="completionRate")
    replies: Optional[int] = None

    # Profile
    profile_views: Optional[int] = Field(None, alias="profileViews")
    website_clicks: Optional[int] = Field(None, alias="websiteClicks")
    email_clicks: Optional[int] = Field(None, alias="emailClicks")

    engagement_rate: Optional[float] = Field(None, alias="engagementRate")

    def value(self, name: str) -> float:
        return getattr(self, name) or 0

    @property
    def engagement(self) -> int:
        return sum(self.value(f) for f in ENGAGEMENT_FIELDS)


METRIC_FIELDS = list(SampleMetrics.model_fields.keys())


class EntityRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    post_id: Optional[str] = Field(None, alias="postId")
    platform_post_id: Optional[str] = Field(None, alias="platformPostId")
    content_type: Optional[str] = Field(None, alias="contentType")


class Sample(BaseModel):
    """One raw metrics snapshot for an account or a post. Never mutated."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    workspace_id: str = Field(alias="workspaceId")
    account_id: str = Field(alias="accountId")
    platform: str
    timestamp: datetime
    kind: MetricKind
    entity_ref: Optional[EntityRef] = Field(None, alias="entityRef")
    metrics: SampleMetrics = Field(default_factory=SampleMetrics)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def post_id(self) -> Optional[str]:
        return self.entity_ref.post_id if self.entity_ref else None


class SampleQuery(BaseModel):
    """Filter over the sample store. `end` is inclusive unless end_inclusive is False."""

    workspace_id: Optional[str] = None
    account_ids: Optional[List[str]] = None
    platforms: Optional[List[str]] = None
    kind: Optional[MetricKind] = None
    post_id: Optional[str] = None
    require_post_id: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    end_inclusive: bool = True
    newest_first: bool = False
    limit: Optional[int] = None

    def matches(self, sample: Sample) -> bool:
        if self.workspace_id is not None and sample.workspace_id != self.workspace_id:
            return False
        if self.account_ids and sample.account_id not in self.account_ids:
            return False
        if self.platforms and sample.platform not in self.platforms:
            return False
        if self.kind is not None and sample.kind != self.kind:
            return False
        if self.post_id is not None and sample.post_id != self.post_id:
            return False
        if self.require_post_id and not sample.post_id:
            return False
        if self.start is not None and sample.timestamp < ensure_utc(self.start):
            return False
        if self.end is not None:
            end = ensure_utc(self.end)
            if sample.timestamp > end or (not self.end_inclusive and sample.timestamp == end):
                return False
        return True

    def to_mongo(self) -> Dict:
        query: Dict = {}
        if self.workspace_id is not None:
            query["workspaceId"] = self.workspace_id
        if self.account_ids:
            query["accountId"] = {"$in": self.account_ids}
        if self.platforms:
            query["platform"] = {"$in": self.platforms}
        if self.kind is not None:
            query["metricType"] = self.kind.value
        if self.post_id is not None:
            query["metadata.postId"] = self.post_id
        elif self.require_post_id:
            query["metadata.postId"] = {"$exists": True, "$ne": None}
        window: Dict = {}
        if self.start is not None:
            window["$gte"] = ensure_utc(self.start)
        if self.end is not None:
            window["$lte" if self.end_inclusive else "$lt"] = ensure_utc(self.end)
        if window:
            query["timestamp"] = window
        return query


class AggregatedMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Sums
    total_likes: int = Field(0, alias="totalLikes")
    total_comments: int = Field(0, alias="totalComments")
    total_shares: int = Field(0, alias="totalShares")
    total_saves: int = Field(0, alias="totalSaves")
    total_impressions: int = Field(0, alias="totalImpressions")
    total_reach: int = Field(0, alias="totalReach")
    total_views: int = Field(0, alias="totalViews")

    # Averages
    avg_engagement_rate: float = Field(0.0, alias="avgEngagementRate")
    avg_likes: float = Field(0.0, alias="avgLikes")
    avg_comments: float = Field(0.0, alias="avgComments")
    avg_shares: float = Field(0.0, alias="avgShares")

    # Min / max
    max_likes: int = Field(0, alias="maxLikes")
    min_likes: int = Field(0, alias="minLikes")
    max_engagement_rate: float = Field(0.0, alias="maxEngagementRate")
    min_engagement_rate: float = Field(0.0, alias="minEngagementRate")

    post_count: int = Field(0, alias="postCount")

    # Growth
    follower_growth: int = Field(0, alias="followerGrowth")
    follower_growth_rate: float = Field(0.0, alias="followerGrowthRate")


class AggregatedBucket(BaseModel):
    """Period roll-up for one (workspace, account, platform)."""

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str = Field(alias="workspaceId")
    account_id: str = Field(alias="accountId")
    platform: str
    period: Period
    period_start: datetime = Field(alias="periodStart")
    period_end: datetime = Field(alias="periodEnd")
    aggregated_metrics: AggregatedMetrics = Field(alias="aggregatedMetrics")

    @field_validator("period_start", "period_end")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def identity(self):
        return (self.workspace_id, self.account_id, self.platform, self.period, self.period_start)


class AggregationRunSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    period: Period
    reference_date: datetime = Field(alias="referenceDate")
    succeeded: List[str] = []
    failed: Dict[str, str] = {}
    buckets_written: int = Field(0, alias="bucketsWritten")
