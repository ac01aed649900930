from datetime import datetime, timezone
from beanie import Document
from pydantic import Field
from pymongo import IndexModel
from socialpulse.schemas.metrics import AggregatedBucket, AggregatedMetrics, Period

def _now():
    return datetime.now(timezone.utc)

class AggregatedMetric(Document):
    """One row per (workspace, account, platform, period, periodStart)."""
    workspace_id: str = Field(alias="workspaceId")
    account_id: str = Field(alias="accountId")
    platform: str
    period: str  # daily, weekly, monthly
    period_start: datetime = Field(alias="periodStart")
    period_end: datetime = Field(alias="periodEnd")
    aggregated_metrics: AggregatedMetrics = Field(alias="aggregatedMetrics")
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")

    class Settings:
        name = "aggregated_metrics"
        indexes = [
            IndexModel(
                [("workspaceId", 1), ("accountId", 1), ("platform", 1), ("period", 1), ("periodStart", 1)],
                unique=True,
            ),
            [("workspaceId", 1), ("period", 1), ("periodStart", -1)],
            [("accountId", 1), ("period", 1), ("periodStart", -1)],
            [("workspaceId", 1), ("platform", 1), ("period", 1), ("periodStart", -1)],
        ]

    @classmethod
    def from_bucket(cls, bucket: AggregatedBucket) -> "AggregatedMetric":
        return cls(
            workspace_id=bucket.workspace_id,
            account_id=bucket.account_id,
            platform=bucket.platform,
            period=bucket.period.value,
            period_start=bucket.period_start,
            period_end=bucket.period_end,
            aggregated_metrics=bucket.aggregated_metrics,
        )

    def to_bucket(self) -> AggregatedBucket:
        return AggregatedBucket(
            workspace_id=self.workspace_id,
            account_id=self.account_id,
            platform=self.platform,
            period=Period(self.period),
            period_start=self.period_start,
            period_end=self.period_end,
            aggregated_metrics=self.aggregated_metrics,
        )
