from typing import Optional, Tuple

from fastapi import HTTPException, Request

from socialpulse.services.container import Services
from socialpulse.utils.dates import parse_datetime, validate_range


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Analytics services are not initialised")
    return services


def date_range(startDate: Optional[str], endDate: Optional[str]) -> Tuple:
    """Parse ISO query strings into a validated UTC range."""
    start = parse_datetime(startDate) if startDate else None
    end = parse_datetime(endDate) if endDate else None
    return validate_range(start, end)
