"""
Mongo-backed sample and aggregate stores.

The engines only talk to these through `find` / `insert` / `upsert` with plain
`Sample` and `AggregatedBucket` records, so any object with the same methods
(an in-memory store in tests, for example) can stand in for them.
"""
from datetime import datetime, timezone
from typing import List

from beanie.odm.operators.update.general import Set

from socialpulse.models.aggregated_metric import AggregatedMetric
from socialpulse.models.metric import MetricSample
from socialpulse.schemas.metrics import AggregatedBucket, Period, Sample, SampleQuery
from socialpulse.utils.dates import ensure_utc


class MongoSampleStore:
    async def insert(self, sample: Sample) -> None:
        await MetricSample.from_sample(sample).insert()

    async def find(self, query: SampleQuery) -> List[Sample]:
        cursor = MetricSample.find(query.to_mongo())
        cursor = cursor.sort("-timestamp" if query.newest_first else "+timestamp")
        if query.limit:
            cursor = cursor.limit(query.limit)
        docs = await cursor.to_list()
        return [doc.to_sample() for doc in docs]

    async def workspace_ids(self) -> List[str]:
        ids = await MetricSample.distinct("workspaceId")
        return sorted(str(i) for i in ids if i)


class MongoAggregateStore:
    async def upsert(self, bucket: AggregatedBucket) -> None:
        doc = AggregatedMetric.from_bucket(bucket)
        # $set the whole metrics block: re-runs overwrite, never accumulate
        await AggregatedMetric.find_one(
            {
                "workspaceId": bucket.workspace_id,
                "accountId": bucket.account_id,
                "platform": bucket.platform,
                "period": bucket.period.value,
                "periodStart": bucket.period_start,
            }
        ).upsert(
            Set(
                {
                    "periodEnd": bucket.period_end,
                    "aggregatedMetrics": bucket.aggregated_metrics.model_dump(by_alias=True),
                    "updatedAt": datetime.now(timezone.utc),
                }
            ),
            on_insert=doc,
        )

    async def find(
        self, workspace_id: str, period: Period, start: datetime, end: datetime
    ) -> List[AggregatedBucket]:
        docs = await AggregatedMetric.find(
            {
                "workspaceId": workspace_id,
                "period": period.value,
                "periodStart": {"$gte": ensure_utc(start), "$lte": ensure_utc(end)},
            }
        ).sort("-periodStart").to_list()
        return [doc.to_bucket() for doc in docs]
