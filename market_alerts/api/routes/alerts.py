"""Alert routes."""

from datetime import date, datetime
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from market_alerts.alerts.service import AlertService
from market_alerts.api.deps import get_alert_service, http_error, scope_params
from market_alerts.errors import AlertEngineError
from market_alerts.filters import AlertFilter, ObservationScope, build_filter

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class EvaluateRequest(BaseModel):
    commodity: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    days: Optional[Union[int, str]] = None
    region_code: Optional[str] = None
    point_ids: Optional[Union[List[str], str]] = None
    point_types: Optional[Union[List[str], str]] = None
    sub_types: Optional[Union[List[str], str]] = None
    review_scope: Optional[str] = None
    source_scope: Optional[str] = None
    operator: Optional[str] = None


class EvaluationResponse(BaseModel):
    evaluated_at: datetime
    total: int
    created: int
    updated: int
    closed: int

    class Config:
        from_attributes = True


class AlertResponse(BaseModel):
    id: str
    rule_id: str
    status: str
    severity: str
    dedupe_key: str
    point_id: str
    point_name: str
    point_type: str
    region_label: Optional[str]
    commodity: str
    trigger_date: date
    first_triggered_at: datetime
    last_triggered_at: datetime
    trigger_value: float
    threshold_value: float
    message: str
    note: Optional[str]
    closed_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AlertListResponse(BaseModel):
    total: int
    items: List[AlertResponse]


class StatusLogResponse(BaseModel):
    id: int
    instance_id: str
    action: str
    from_status: Optional[str]
    to_status: str
    operator: str
    note: Optional[str]
    reason: Optional[str]
    meta: Optional[dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None
    reason: Optional[str] = None
    operator: Optional[str] = None
    expected_status: Optional[str] = None


@router.post("/evaluate", response_model=EvaluationResponse)
async def evaluate_alerts(
    request: EvaluateRequest,
    service: AlertService = Depends(get_alert_service),
):
    """Evaluate active rules over a scope and reconcile alert instances."""
    params = request.model_dump(exclude={"operator"})
    try:
        scope = build_filter(ObservationScope, **params)
        return await service.evaluate(scope, request.operator)
    except AlertEngineError as e:
        raise http_error(e) from e


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    scope: dict = Depends(scope_params),
    severity: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[str] = None,
    refresh: bool = Query(False, description="Evaluate the scope before listing"),
    operator: Optional[str] = None,
    service: AlertService = Depends(get_alert_service),
):
    """List alert instances, most severe first."""
    try:
        alert_filter = build_filter(
            AlertFilter, severity=severity, status=status, limit=limit, **scope
        )
        listing = await service.list_alerts(alert_filter, refresh=refresh, operator=operator)
    except AlertEngineError as e:
        raise http_error(e) from e
    return AlertListResponse(
        total=listing.total,
        items=[AlertResponse.model_validate(item) for item in listing.items],
    )


@router.get("/{alert_id}/logs", response_model=List[StatusLogResponse])
async def list_alert_logs(
    alert_id: str,
    service: AlertService = Depends(get_alert_service),
):
    """Audit history of an alert, newest first."""
    try:
        return await service.list_status_logs(alert_id)
    except AlertEngineError as e:
        raise http_error(e) from e


@router.patch("/{alert_id}/status", response_model=AlertResponse)
async def update_alert_status(
    alert_id: str,
    update: StatusUpdate,
    service: AlertService = Depends(get_alert_service),
):
    """Acknowledge, close or reopen an alert."""
    try:
        return await service.update_status(
            alert_id,
            update.status,
            note=update.note,
            reason=update.reason,
            operator=update.operator,
            expected_status=update.expected_status,
        )
    except AlertEngineError as e:
        raise http_error(e) from e
