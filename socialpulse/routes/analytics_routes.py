from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from socialpulse.routes.deps import date_range, get_services
from socialpulse.schemas.metrics import EntityRef, MetricKind, Period, SampleMetrics
from socialpulse.services.container import Services
from socialpulse.utils.dates import parse_datetime, utcnow

router = APIRouter(prefix="/analytics", tags=["Analytics"])


class StoreSampleRequest(BaseModel):
    workspaceId: str
    accountId: str
    platform: str
    kind: MetricKind = Field(alias="metricType")
    entityRef: Optional[EntityRef] = None
    metrics: SampleMetrics
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


# ---- ingestion & raw queries ----------------------------------------------


@router.post("/metrics", status_code=201)
async def store_sample(req: StoreSampleRequest, services: Services = Depends(get_services)):
    return await services.ingestion.store_sample(
        workspace_id=req.workspaceId,
        account_id=req.accountId,
        platform=req.platform,
        kind=req.kind,
        metrics=req.metrics,
        timestamp=req.timestamp or utcnow(),
        entity_ref=req.entityRef,
    )


@router.get("/workspace/{workspaceId}/metrics")
async def get_workspace_metrics(
    workspaceId: str,
    startDate: str,
    endDate: str,
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_workspace_metrics(workspaceId, start, end)


@router.get("/account/{accountId}/metrics")
async def get_account_metrics(
    accountId: str,
    startDate: str,
    endDate: str,
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_account_metrics(accountId, start, end)


@router.get("/post/{postId}/metrics")
async def get_post_metrics(postId: str, services: Services = Depends(get_services)):
    return await services.dashboard.get_post_metrics(postId)


@router.get("/workspace/{workspaceId}/aggregated/{period}")
async def get_aggregated_metrics(
    workspaceId: str,
    period: Period,
    startDate: str,
    endDate: str,
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_aggregated_metrics(workspaceId, period, start, end)


@router.post("/workspace/{workspaceId}/aggregate/{period}")
async def aggregate_workspace(
    workspaceId: str,
    period: Period,
    date: Optional[str] = None,
    services: Services = Depends(get_services),
):
    reference = parse_datetime(date) if date else utcnow()
    buckets = await services.aggregation.aggregate(workspaceId, period, reference)
    return {"status": "ok", "period": period.value, "buckets": buckets}


@router.delete("/cache/{scope}/{scopeId}")
async def invalidate_cache(scope: str, scopeId: str, services: Services = Depends(get_services)):
    removed = await services.dashboard.invalidate_cache(scope, scopeId)
    return {"status": "ok", "removed": removed}


# ---- dashboard -------------------------------------------------------------


@router.get("/workspace/{workspaceId}/dashboard/overview")
async def get_overview(
    workspaceId: str,
    startDate: str,
    endDate: str,
    platforms: Optional[List[str]] = Query(None),
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_overview_kpis(workspaceId, start, end, platforms, accountIds)


@router.get("/workspace/{workspaceId}/dashboard/engagement")
async def get_engagement(
    workspaceId: str,
    startDate: str,
    endDate: str,
    platforms: Optional[List[str]] = Query(None),
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_engagement_metrics(workspaceId, start, end, platforms, accountIds)


@router.get("/workspace/{workspaceId}/dashboard/reach")
async def get_reach(
    workspaceId: str,
    startDate: str,
    endDate: str,
    platforms: Optional[List[str]] = Query(None),
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_reach_and_impressions(workspaceId, start, end, platforms, accountIds)


@router.get("/workspace/{workspaceId}/dashboard/followers")
async def get_follower_growth(
    workspaceId: str,
    startDate: str,
    endDate: str,
    granularity: str = "daily",
    platforms: Optional[List[str]] = Query(None),
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_follower_growth(
        workspaceId, start, end, granularity, platforms, accountIds
    )


@router.get("/workspace/{workspaceId}/dashboard/platforms")
async def get_platform_breakdown(
    workspaceId: str,
    startDate: str,
    endDate: str,
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_platform_breakdown(workspaceId, start, end, accountIds)


@router.get("/workspace/{workspaceId}/dashboard/top-posts")
async def get_top_posts(
    workspaceId: str,
    startDate: str,
    endDate: str,
    sortBy: str = "engagement",
    limit: int = Query(10, ge=1, le=100),
    platforms: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_top_performing_posts(workspaceId, start, end, sortBy, limit, platforms)


@router.get("/workspace/{workspaceId}/dashboard/timeseries")
async def get_time_series(
    workspaceId: str,
    startDate: str,
    endDate: str,
    granularity: str = "daily",
    platforms: Optional[List[str]] = Query(None),
    accountIds: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.dashboard.get_time_series_data(
        workspaceId, start, end, granularity, platforms, accountIds
    )


# ---- post performance ------------------------------------------------------


@router.get("/workspace/{workspaceId}/posts/compare")
async def compare_posts(
    workspaceId: str,
    postId1: str,
    postId2: str,
    services: Services = Depends(get_services),
):
    return await services.posts.compare_posts(workspaceId, postId1, postId2)


@router.get("/workspace/{workspaceId}/posts/{postId}/performance")
async def get_post_performance(workspaceId: str, postId: str, services: Services = Depends(get_services)):
    return await services.posts.get_post_performance(workspaceId, postId)


@router.get("/workspace/{workspaceId}/posts/{postId}/timeline")
async def get_post_timeline(workspaceId: str, postId: str, services: Services = Depends(get_services)):
    return await services.posts.get_post_timeline(workspaceId, postId)


@router.get("/workspace/{workspaceId}/content-types")
async def get_content_type_performance(
    workspaceId: str,
    startDate: str,
    endDate: str,
    platforms: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.posts.get_content_type_performance(workspaceId, start, end, platforms)
