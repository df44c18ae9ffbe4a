"""FastAPI dependencies."""

from typing import Any, Optional

from fastapi import Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.alerts.service import AlertService
from market_alerts.continuity.service import ContinuityService
from market_alerts.db.session import AsyncSessionLocal
from market_alerts.detect.rule_store import RuleStore
from market_alerts.errors import (
    AlertEngineError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)

_STATUS_BY_ERROR = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    StoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for the session factory services open their sessions from."""
    return AsyncSessionLocal


def get_alert_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AlertService:
    return AlertService(session_factory)


def get_continuity_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ContinuityService:
    return ContinuityService(session_factory)


def get_rule_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RuleStore:
    return RuleStore(session_factory)


def http_error(error: AlertEngineError) -> HTTPException:
    """
    Map an engine error onto an HTTP error.

    Args:
        error: Error raised by a service

    Returns:
        HTTPException with 400/404/409/503 and the error's context as detail
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            status_code = code
            break
    return HTTPException(status_code=status_code, detail=error.to_dict())


def scope_params(
    commodity: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    days: Optional[str] = None,
    region_code: Optional[str] = None,
    point_ids: Optional[str] = Query(None, description="Comma separated point ids"),
    point_types: Optional[str] = Query(None, description="Comma separated point types"),
    sub_types: Optional[str] = Query(None, description="Comma separated price sub types"),
    review_scope: Optional[str] = None,
    source_scope: Optional[str] = None,
) -> dict[str, Any]:
    """Raw observation-scope query parameters, parsed later by the filter models."""
    return {
        "commodity": commodity,
        "start_date": start_date,
        "end_date": end_date,
        "days": days,
        "region_code": region_code,
        "point_ids": point_ids,
        "point_types": point_types,
        "sub_types": sub_types,
        "review_scope": review_scope,
        "source_scope": source_scope,
    }
