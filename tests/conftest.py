"""
Shared fixtures: in-memory stand-ins for the Mongo stores, the cache backend
and the post directory, plus sample builders.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from socialpulse.schemas.metrics import EntityRef, MetricKind, Sample, SampleMetrics
from socialpulse.services.cache_service import CacheBackend, MemoryCacheBackend, MetricsCache
from socialpulse.services.post_directory import PostDetails


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_sample(
    timestamp: datetime,
    workspace_id: str = "ws1",
    account_id: str = "acc1",
    platform: str = "instagram",
    kind: MetricKind = MetricKind.ACCOUNT,
    post_id: str = None,
    platform_post_id: str = None,
    content_type: str = None,
    **metrics,
) -> Sample:
    entity_ref = None
    if post_id is not None:
        kind = MetricKind.POST
        entity_ref = EntityRef(post_id=post_id, platform_post_id=platform_post_id, content_type=content_type)
    return Sample(
        workspace_id=workspace_id,
        account_id=account_id,
        platform=platform,
        timestamp=timestamp,
        kind=kind,
        entity_ref=entity_ref,
        metrics=SampleMetrics(**metrics),
    )


class InMemorySampleStore:
    def __init__(self, samples=None):
        self.samples = list(samples or [])
        self.find_calls = 0

    async def insert(self, sample):
        self.samples.append(sample)

    async def find(self, query):
        self.find_calls += 1
        matched = [s for s in self.samples if query.matches(s)]
        matched.sort(key=lambda s: s.timestamp, reverse=query.newest_first)
        if query.limit:
            matched = matched[: query.limit]
        return matched

    async def workspace_ids(self):
        return sorted({s.workspace_id for s in self.samples})


class FailingSampleStore(InMemorySampleStore):
    """Raises for the given workspaces, behaves normally otherwise."""

    def __init__(self, samples=None, fail_workspaces=()):
        super().__init__(samples)
        self.fail_workspaces = set(fail_workspaces)

    async def find(self, query):
        if query.workspace_id in self.fail_workspaces:
            raise RuntimeError(f"store unavailable for {query.workspace_id}")
        return await super().find(query)


class InMemoryAggregateStore:
    def __init__(self, fail_accounts=()):
        self.buckets = {}
        self.upserts = 0
        self.fail_accounts = set(fail_accounts)

    async def upsert(self, bucket):
        if bucket.account_id in self.fail_accounts:
            raise RuntimeError(f"write rejected for {bucket.account_id}")
        self.upserts += 1
        self.buckets[bucket.identity] = bucket.model_copy(deep=True)

    async def find(self, workspace_id, period, start, end):
        found = [
            b
            for b in self.buckets.values()
            if b.workspace_id == workspace_id and b.period == period and start <= b.period_start <= end
        ]
        return sorted(found, key=lambda b: b.period_start, reverse=True)


class BrokenCacheBackend(CacheBackend):
    """Every call fails the way an unreachable Redis does."""

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, ttl):
        raise RedisConnectionError("connection refused")

    async def delete_pattern(self, pattern):
        raise RedisConnectionError("connection refused")


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakePostDirectory:
    def __init__(self, posts=None, fail=False):
        self.posts = {p.post_id: p for p in (posts or [])}
        self.fail = fail
        self.calls = 0

    async def get_post(self, post_id):
        self.calls += 1
        if self.fail:
            raise httpx.ConnectError("directory down")
        return self.posts.get(post_id)

    async def get_posts(self, post_ids):
        self.calls += 1
        if self.fail:
            raise httpx.ConnectError("directory down")
        return {p: self.posts[p] for p in post_ids if p in self.posts}


def post_details(post_id, content="", published_at=None, **extra) -> PostDetails:
    return PostDetails(post_id=post_id, content=content, published_at=published_at, **extra)


@pytest.fixture
def sample_store():
    return InMemorySampleStore()


@pytest.fixture
def aggregate_store():
    return InMemoryAggregateStore()


@pytest.fixture
def cache_clock():
    return FakeClock(1000.0)


@pytest.fixture
def cache(cache_clock):
    return MetricsCache(MemoryCacheBackend(clock=cache_clock), short_ttl=300, long_ttl=3600)


@pytest.fixture
def broken_cache():
    return MetricsCache(BrokenCacheBackend())


@pytest.fixture
def january_samples():
    """
    One instagram account through January 2024: a follower reading every day
    rising 15000 -> 15420, one post per day with 200-290 likes, and a single
    reading on Dec 31 that opens the previous window.
    """
    samples = [make_sample(utc(2023, 12, 31, 12), followers=15000)]
    for day in range(1, 32):
        ts = utc(2024, 1, day, 12)
        samples.append(make_sample(ts, followers=15000 + 14 * (day - 1)))
        samples.append(
            make_sample(
                ts + timedelta(minutes=5),
                post_id=f"post-{day}",
                platform_post_id=f"ig-{day}",
                likes=200 + 3 * (day - 1),
                comments=day,
                shares=2,
                saves=1,
                reach=1000,
                impressions=1500,
            )
        )
    return samples
