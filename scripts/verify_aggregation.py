import asyncio
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv

from socialpulse.models.aggregated_metric import AggregatedMetric
from socialpulse.models.metric import MetricSample
from socialpulse.schemas.metrics import EntityRef, MetricKind, Period, SampleMetrics
from socialpulse.services.container import build_services

WORKSPACE = "verify-aggregation"


async def verify_aggregation():
    # Load env for DB connection
    load_dotenv()

    # Initialize Beanie
    import main
    await main.ensure_beanie_initialized()
    if not main.db_initialized:
        print("Database not initialized. Check MONGODB_URI.")
        return

    services = build_services()
    print("--- Verification Started ---")

    # 1. Store a day of samples for yesterday
    day = (datetime.now(timezone.utc) - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    await services.ingestion.store_sample(
        WORKSPACE, "acc-1", "instagram", MetricKind.ACCOUNT, SampleMetrics(followers=1000), day + timedelta(hours=8)
    )
    for i, likes in enumerate([10, 30]):
        await services.ingestion.store_sample(
            WORKSPACE,
            "acc-1",
            "instagram",
            MetricKind.POST,
            SampleMetrics(likes=likes, comments=2, reach=100 * (i + 1)),
            day + timedelta(hours=12 + i),
            EntityRef(post_id=f"verify-post-{i}"),
        )
    await services.ingestion.store_sample(
        WORKSPACE, "acc-1", "instagram", MetricKind.ACCOUNT, SampleMetrics(followers=1100), day + timedelta(hours=20)
    )
    print(f"Stored 4 samples for {day.date()}")

    # 2. Aggregate twice; the second run must overwrite, not accumulate
    for run in (1, 2):
        buckets = await services.aggregation.aggregate_daily(WORKSPACE, day)
        print(f"Run {run}: {len(buckets)} bucket(s)")

    stored = await services.dashboard.get_aggregated_metrics(WORKSPACE, Period.DAILY, day, day)
    if len(stored) == 1 and stored[0].aggregated_metrics.total_likes == 40:
        m = stored[0].aggregated_metrics
        print(f"SUCCESS: likes={m.total_likes} growth={m.follower_growth} ({m.follower_growth_rate}%)")
    else:
        print(f"FAILURE: unexpected buckets {[b.model_dump() for b in stored]}")

    # 3. Dashboard overview over the same day
    kpis = await services.dashboard.get_overview_kpis(WORKSPACE, day, day + timedelta(days=1) - timedelta(seconds=1))
    print(f"Overview: followers={kpis.total_followers} engagement={kpis.total_engagement} posts={kpis.total_posts}")

    # 4. Cleanup
    await MetricSample.find({"workspaceId": WORKSPACE}).delete()
    await AggregatedMetric.find({"workspaceId": WORKSPACE}).delete()
    await services.close()
    print("Verification data deleted.")


if __name__ == "__main__":
    asyncio.run(verify_aggregation())
