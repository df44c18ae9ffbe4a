"""Data continuity routes."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from market_alerts.api.deps import get_continuity_service, http_error, scope_params
from market_alerts.continuity.service import ContinuityService
from market_alerts.errors import AlertEngineError
from market_alerts.filters import ObservationScope, build_filter

router = APIRouter(prefix="/api/continuity", tags=["continuity"])


@router.get("/health")
async def get_continuity_health(
    scope: dict = Depends(scope_params),
    service: ContinuityService = Depends(get_continuity_service),
):
    """Continuity score per reporting point, worst first, with a summary."""
    try:
        report = await service.get_continuity_health(build_filter(ObservationScope, **scope))
    except AlertEngineError as e:
        raise http_error(e) from e
    return {
        "summary": report.summary,
        "points": [point.to_dict() for point in report.points],
    }


@router.get("/regions")
async def get_region_analytics(
    scope: dict = Depends(scope_params),
    level: str = Query("city", description="province, city or district"),
    window: str = Query("30", description="7, 30, 90 or all"),
    service: ContinuityService = Depends(get_continuity_service),
):
    """Per-region price statistics against the previous window."""
    try:
        analytics = await service.get_region_analytics(
            build_filter(ObservationScope, **scope), level=level, window=window
        )
    except AlertEngineError as e:
        raise http_error(e) from e
    return asdict(analytics)
