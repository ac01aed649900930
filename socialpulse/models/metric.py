from datetime import datetime, timezone
from typing import Optional
from beanie import Document
from pydantic import Field
from socialpulse.schemas.metrics import EntityRef, MetricKind, Sample, SampleMetrics

class MetricSample(Document):
    """Append-only raw snapshot written by the collectors."""
    workspace_id: str = Field(alias="workspaceId")
    account_id: str = Field(alias="accountId")
    platform: str
    timestamp: datetime
    metric_type: str = Field(alias="metricType")  # account, post

    # postId / platformPostId / contentType for post samples
    metadata: Optional[EntityRef] = None
    metrics: SampleMetrics = Field(default_factory=SampleMetrics)

    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="collectedAt")

    class Settings:
        name = "metrics"
        indexes = [
            [("workspaceId", 1), ("timestamp", -1)],
            [("accountId", 1), ("timestamp", -1)],
            [("workspaceId", 1), ("platform", 1), ("timestamp", -1)],
            [("metadata.postId", 1), ("timestamp", -1)],
        ]

    @classmethod
    def from_sample(cls, sample: Sample) -> "MetricSample":
        return cls(
            workspace_id=sample.workspace_id,
            account_id=sample.account_id,
            platform=sample.platform,
            timestamp=sample.timestamp,
            metric_type=sample.kind.value,
            metadata=sample.entity_ref,
            metrics=sample.metrics,
        )

    def to_sample(self) -> Sample:
        return Sample(
            workspace_id=self.workspace_id,
            account_id=self.account_id,
            platform=self.platform,
            timestamp=self.timestamp,
            kind=MetricKind(self.metric_type),
            entity_ref=self.metadata,
            metrics=self.metrics,
        )
