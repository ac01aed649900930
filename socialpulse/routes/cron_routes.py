"""
Cron Routes - aggregation sweeps triggered by an external scheduler
"""
from fastapi import APIRouter, Depends, HTTPException, Request

from socialpulse.routes.deps import get_services
from socialpulse.services.container import Services
from socialpulse.services.scheduler_service import JOBS, run_job
from socialpulse.utils import config

router = APIRouter(prefix="/cron", tags=["Cron"])


def verify_cron_secret(request: Request):
    """Verify the request is from Vercel Cron or has valid secret."""
    # Vercel Cron Jobs include this header
    if request.headers.get("x-vercel-cron"):
        return True

    auth_header = request.headers.get("authorization")
    if config.CRON_SECRET and auth_header == f"Bearer {config.CRON_SECRET}":
        return True

    return False


@router.post("/aggregate/{job}")
@router.get("/aggregate/{job}")  # GET also works for Vercel Cron
async def run_aggregation(job: str, request: Request, services: Services = Depends(get_services)):
    """
    Run one aggregation sweep over every workspace:
    hourly (today's daily buckets), daily, weekly or monthly.
    """
    if not verify_cron_secret(request):
        raise HTTPException(status_code=401, detail="Unauthorized")
    if job not in JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown aggregation job: {job}")

    summary = await run_job(services.aggregation, job)
    return {"status": "ok", "job": job, "summary": summary}
