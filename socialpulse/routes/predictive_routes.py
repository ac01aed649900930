from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from socialpulse.routes.deps import date_range, get_services
from socialpulse.schemas.predictive import EngagementFeatures
from socialpulse.services.container import Services

router = APIRouter(prefix="/analytics/workspace/{workspaceId}/predictive", tags=["Predictive Analytics"])


@router.post("/engagement")
async def predict_engagement(
    workspaceId: str,
    features: EngagementFeatures,
    platform: str = Query(...),
    services: Services = Depends(get_services),
):
    return await services.predictive.predict_engagement(workspaceId, platform, features)


@router.get("/reach-forecast")
async def forecast_reach(
    workspaceId: str,
    platform: str,
    daysAhead: int = Query(7, ge=1, le=90),
    services: Services = Depends(get_services),
):
    return await services.predictive.forecast_reach(workspaceId, platform, daysAhead)


@router.get("/anomalies")
async def detect_anomalies(
    workspaceId: str,
    platform: str,
    startDate: str,
    endDate: str,
    sensitivity: float = Query(2.5, ge=1, le=5),
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.predictive.detect_anomalies(workspaceId, platform, start, end, sensitivity)


@router.get("/trends")
async def predict_trends(
    workspaceId: str,
    platform: str,
    metrics: Optional[List[str]] = Query(None),
    daysAhead: int = Query(30, ge=1, le=90),
    services: Services = Depends(get_services),
):
    return await services.predictive.predict_trends(workspaceId, platform, metrics, daysAhead)


@router.get("/insights")
async def generate_insights(
    workspaceId: str,
    platform: str,
    startDate: str,
    endDate: str,
    services: Services = Depends(get_services),
):
    start, end = date_range(startDate, endDate)
    return await services.predictive.generate_insights(workspaceId, platform, start, end)
