"""Tests for query filter parsing."""

from datetime import date

import pytest

from market_alerts.alerts.states import AlertStatus
from market_alerts.detect.rules import Severity
from market_alerts.errors import ValidationError
from market_alerts.filters import (
    AlertFilter,
    ObservationScope,
    PointType,
    ReviewScope,
    SourceScope,
    build_filter,
    commodity_candidates,
    parse_csv,
)


def test_parse_csv():
    assert parse_csv("a, b,,a") == ["a", "b"]
    assert parse_csv(["a,b", "c"]) == ["a", "b", "c"]
    assert parse_csv(None) == []


def test_commodity_aliases():
    assert set(commodity_candidates("corn")) == {"corn", "CORN", "玉米"}
    assert set(commodity_candidates("玉米")) == {"玉米", "CORN"}
    assert commodity_candidates("OATS") == ["OATS"]
    assert commodity_candidates("  ") == []


def test_scope_defaults():
    scope = build_filter(ObservationScope)
    assert scope.review_scope == ReviewScope.APPROVED_AND_PENDING
    assert scope.source_scope == SourceScope.ALL
    assert scope.days == 30
    assert scope.review_scope.statuses() == ["APPROVED", "AUTO_APPROVED", "PENDING"]
    assert scope.source_scope.input_methods() is None


def test_scope_parses_raw_parameters():
    scope = build_filter(
        ObservationScope,
        point_ids="P1,P2",
        point_types="port, region",
        sub_types="STATION_ORIGIN,station_dest,LISTED",
        review_scope="approved_only",
        source_scope="",
        region_code=" ",
    )
    assert scope.point_ids == ["P1", "P2"]
    assert scope.point_types == [PointType.PORT, PointType.REGION]
    assert scope.sub_types == ["STATION", "LISTED"]
    assert scope.review_scope == ReviewScope.APPROVED_ONLY
    assert scope.source_scope == SourceScope.ALL
    assert scope.region_code is None


def test_window_resolution():
    today = date(2024, 3, 10)
    assert build_filter(ObservationScope, days="7").resolve_window(today) == (
        date(2024, 3, 4),
        today,
    )
    explicit = build_filter(ObservationScope, start_date="2024-01-01", end_date="2024-01-31")
    assert explicit.resolve_window(today) == (date(2024, 1, 1), date(2024, 1, 31))


@pytest.mark.parametrize(
    "params",
    [
        {"point_types": "PORT,HARBOUR"},
        {"review_scope": "SOME"},
        {"days": "0"},
        {"days": "many"},
        {"start_date": "2024-02-01", "end_date": "2024-01-01"},
    ],
)
def test_invalid_scope_parameters(params):
    with pytest.raises(ValidationError) as exc_info:
        build_filter(ObservationScope, **params)
    assert exc_info.value.context["errors"]


def test_alert_filter_enums_and_limit():
    alert_filter = build_filter(AlertFilter, severity="high", status="open", limit="5")
    assert alert_filter.severity == Severity.HIGH
    assert alert_filter.status == AlertStatus.OPEN
    assert alert_filter.limit == 5
    assert build_filter(AlertFilter).limit == 200

    with pytest.raises(ValidationError):
        build_filter(AlertFilter, status="SNOOZED")


def test_alert_filter_from_scope_drops_severity_and_status():
    source = build_filter(
        AlertFilter, commodity="CORN", point_types="PORT", severity="LOW", status="OPEN"
    )
    derived = AlertFilter.from_scope(source)
    assert derived.commodity == "CORN"
    assert derived.point_types == [PointType.PORT]
    assert derived.severity is None
    assert derived.status is None
