from datetime import datetime
from typing import Optional

from socialpulse.schemas.metrics import EntityRef, MetricKind, Sample, SampleMetrics
from socialpulse.services.cache_service import MetricsCache
from socialpulse.utils.errors import InvalidQueryError
from socialpulse.utils.logger import logger


class MetricsIngestionService:
    """Entry point for the collectors: persist one sample, then drop stale cache entries."""

    def __init__(self, sample_store, cache: Optional[MetricsCache] = None):
        self.sample_store = sample_store
        self.cache = cache

    async def store_sample(
        self,
        workspace_id: str,
        account_id: str,
        platform: str,
        kind: MetricKind,
        metrics: SampleMetrics,
        timestamp: datetime,
        entity_ref: Optional[EntityRef] = None,
    ) -> Sample:
        kind = MetricKind(kind)
        if kind == MetricKind.POST and (entity_ref is None or not entity_ref.post_id):
            raise InvalidQueryError("Post samples require entityRef.postId")

        sample = Sample(
            workspace_id=workspace_id,
            account_id=account_id,
            platform=platform,
            timestamp=timestamp,
            kind=kind,
            entity_ref=entity_ref,
            metrics=metrics,
        )
        await self.sample_store.insert(sample)
        logger.info(f"Stored {kind.value} metrics for account {account_id} on {platform}")

        if self.cache is not None:
            await self.cache.invalidate_workspace(workspace_id)
            await self.cache.invalidate_account(account_id)
            if sample.post_id:
                await self.cache.invalidate_post(sample.post_id)
        return sample
