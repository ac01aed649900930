"""
Explicit wiring of the stores, the cache and the engines built on them.
"""
from typing import Optional

from socialpulse.services.aggregation_service import MetricsAggregationService
from socialpulse.services.analytics_dashboard_service import AnalyticsDashboardService
from socialpulse.services.cache_service import MetricsCache, create_cache
from socialpulse.services.ingestion_service import MetricsIngestionService
from socialpulse.services.metric_store import MongoAggregateStore, MongoSampleStore
from socialpulse.services.post_directory import HttpPostDirectory
from socialpulse.services.post_performance_service import PostPerformanceService
from socialpulse.services.predictive_service import PredictiveAnalyticsService
from socialpulse.utils import config


class Services:
    def __init__(
        self,
        sample_store,
        aggregate_store,
        cache: Optional[MetricsCache] = None,
        post_directory=None,
        batch_size: int = 10,
    ):
        self.sample_store = sample_store
        self.aggregate_store = aggregate_store
        self.cache = cache
        self.post_directory = post_directory

        self.ingestion = MetricsIngestionService(sample_store, cache)
        self.aggregation = MetricsAggregationService(sample_store, aggregate_store, cache, batch_size)
        self.dashboard = AnalyticsDashboardService(sample_store, aggregate_store, cache, post_directory)
        self.posts = PostPerformanceService(sample_store, cache, post_directory)
        self.predictive = PredictiveAnalyticsService(sample_store, post_directory)

    async def close(self):
        if self.cache is not None:
            await self.cache.close()


def build_services() -> Services:
    cache = create_cache(
        config.CACHE_BACKEND,
        config.REDIS_URL,
        config.CACHE_TTL_SECONDS,
        config.AGGREGATED_CACHE_TTL_SECONDS,
    )
    post_directory = None
    if config.POST_DIRECTORY_URL:
        post_directory = HttpPostDirectory(config.POST_DIRECTORY_URL, config.POST_DIRECTORY_API_KEY)

    return Services(
        MongoSampleStore(),
        MongoAggregateStore(),
        cache=cache,
        post_directory=post_directory,
        batch_size=config.AGGREGATION_BATCH_SIZE,
    )
