"""Query helpers for alert instances."""

from datetime import date
from typing import Optional

from sqlalchemy import or_

from market_alerts.db.models import AlertInstance
from market_alerts.detect.rules import SEVERITY_RANK, Severity
from market_alerts.filters import AlertFilter


def alert_conditions(
    alert_filter: AlertFilter,
    start: Optional[date],
    end: Optional[date],
) -> list:
    """SQL conditions on ``AlertInstance`` for a filter and resolved window."""
    conditions = []

    candidates = alert_filter.commodity_candidates()
    if candidates:
        conditions.append(AlertInstance.commodity.in_(candidates))
    if start:
        conditions.append(AlertInstance.trigger_date >= start)
    if end:
        conditions.append(AlertInstance.trigger_date <= end)
    if alert_filter.point_ids:
        conditions.append(AlertInstance.point_id.in_(alert_filter.point_ids))
    if alert_filter.point_types:
        conditions.append(
            AlertInstance.point_type.in_([item.value for item in alert_filter.point_types])
        )
    if alert_filter.region_code:
        # Regional point keys embed the region code
        conditions.append(
            or_(
                AlertInstance.point_id.contains(alert_filter.region_code),
                AlertInstance.region_label.ilike(f"%{alert_filter.region_code}%"),
            )
        )
    if alert_filter.severity:
        conditions.append(AlertInstance.severity == alert_filter.severity.value)
    if alert_filter.status:
        conditions.append(AlertInstance.status == alert_filter.status.value)

    return conditions


def sort_alerts(instances: list[AlertInstance]) -> list[AlertInstance]:
    """Most severe first, then most recent trigger date first."""
    return sorted(
        instances,
        key=lambda item: (SEVERITY_RANK[Severity(item.severity)], item.trigger_date),
        reverse=True,
    )
