"""Tests for rule evaluation over point series."""

from datetime import date, datetime, timedelta
from decimal import Decimal

from market_alerts.detect.evaluator import build_dedupe_key, evaluate_rules, latest_price_mean
from market_alerts.detect.rules import AlertRule, RuleDirection, RuleType, Severity
from market_alerts.observations.store import PriceObservation, group_observations

DAY = date(2024, 3, 10)


def observation(point_key, price, day_change=None, days_ago=0, **extra):
    effective = DAY - timedelta(days=days_ago)
    return PriceObservation(
        point_key=point_key,
        commodity="CORN",
        effective_date=effective,
        created_at=datetime.combine(effective, datetime.min.time()) + timedelta(hours=9),
        price=Decimal(str(price)),
        day_change=Decimal(str(day_change)) if day_change is not None else None,
        point_name=extra.pop("point_name", point_key),
        point_type="PORT",
        **extra,
    )


def rule(rule_type, threshold=None, days=None, **extra):
    return AlertRule(
        id=extra.pop("id", "r1"),
        name=extra.pop("name", "rule"),
        rule_type=rule_type,
        threshold=Decimal(str(threshold)) if threshold is not None else None,
        days=days,
        created_at=datetime(2024, 1, 1),
        **extra,
    )


def test_day_change_abs_hit():
    series = group_observations([observation("P1", 2400, day_change=25)])
    hits = evaluate_rules([rule(RuleType.DAY_CHANGE_ABS, 20, severity=Severity.HIGH)], series)

    assert len(hits) == 1
    hit = hits[0]
    assert hit.trigger_value == Decimal("25.00")
    assert hit.threshold_value == Decimal("20.00")
    assert hit.severity == Severity.HIGH
    assert "+25.00" in hit.message
    assert hit.dedupe_key == "r1:P1:2024-03-10"


def test_day_change_abs_boundary_and_missing_change():
    series = group_observations(
        [observation("P1", 2400, day_change=-20), observation("P2", 2400, day_change=None)]
    )
    hits = evaluate_rules([rule(RuleType.DAY_CHANGE_ABS, 20)], series)
    assert [hit.point_key for hit in hits] == ["P1"]


def test_day_change_pct():
    series = group_observations(
        [observation("P1", 200, day_change=10), observation("P2", 0, day_change=10)]
    )
    hits = evaluate_rules([rule(RuleType.DAY_CHANGE_PCT, 5)], series)
    assert [hit.point_key for hit in hits] == ["P1"]
    assert hits[0].trigger_value == Decimal("5.00")


def test_deviation_uses_mean_of_latest_prices():
    series = group_observations(
        [
            observation("P1", 90, days_ago=1),
            observation("P1", 100),
            observation("P2", 100),
            observation("P3", 130),
        ]
    )
    assert latest_price_mean(series) == Decimal("110")

    hits = evaluate_rules([rule(RuleType.DEVIATION_FROM_MEAN_PCT, 15)], series)
    assert [hit.point_key for hit in hits] == ["P3"]
    assert hits[0].trigger_value == Decimal("18.18")


def test_continuous_days():
    series = group_observations(
        [
            observation("UP", 100, days_ago=2),
            observation("UP", 101, days_ago=1),
            observation("UP", 102),
            observation("FLAT_UP", 100, days_ago=2),
            observation("FLAT_UP", 100, days_ago=1),
            observation("FLAT_UP", 103),
            observation("MIXED", 100, days_ago=2),
            observation("MIXED", 105, days_ago=1),
            observation("MIXED", 101),
            observation("SHORT", 100, days_ago=1),
            observation("SHORT", 101),
        ]
    )

    up_rule = rule(RuleType.CONTINUOUS_DAYS, days=3, direction=RuleDirection.UP)
    hits = evaluate_rules([up_rule], series)
    assert [hit.point_key for hit in hits] == ["UP", "FLAT_UP"]
    assert hits[0].trigger_value == hits[0].threshold_value == Decimal("3.00")
    assert "rose for 3 consecutive days" in hits[0].message

    down_rule = rule(RuleType.CONTINUOUS_DAYS, days=3, direction=RuleDirection.DOWN)
    assert evaluate_rules([down_rule], series) == []


def test_inactive_rules_and_empty_inputs():
    series = group_observations([observation("P1", 2400, day_change=50)])
    assert evaluate_rules([rule(RuleType.DAY_CHANGE_ABS, 20, is_active=False)], series) == []
    assert evaluate_rules([], series) == []
    assert evaluate_rules([rule(RuleType.DAY_CHANGE_ABS, 20)], {}) == []


def test_hits_follow_point_then_rule_order():
    series = group_observations(
        [observation("P1", 100, day_change=30), observation("P2", 100, day_change=30)]
    )
    low = rule(RuleType.DAY_CHANGE_ABS, 10, id="low", priority=1)
    high = rule(RuleType.DAY_CHANGE_ABS, 10, id="high", priority=9)
    hits = evaluate_rules([low, high], series)
    assert [(hit.point_key, hit.rule_id) for hit in hits] == [
        ("P1", "high"),
        ("P1", "low"),
        ("P2", "high"),
        ("P2", "low"),
    ]


def test_bad_data_skips_only_that_pair():
    broken = PriceObservation(
        point_key="BROKEN",
        commodity="CORN",
        effective_date=DAY,
        created_at=datetime(2024, 3, 10, 9),
        price=None,
        day_change=Decimal("30"),
    )
    series = {"BROKEN": [broken], **group_observations([observation("P1", 130)])}
    hits = evaluate_rules(
        [rule(RuleType.DEVIATION_FROM_MEAN_PCT, 5)], series, mean_latest_price=Decimal("100")
    )
    assert [hit.point_key for hit in hits] == ["P1"]


def test_evaluation_is_deterministic():
    series = group_observations([observation("P1", 2400, day_change=25)])
    rules = [rule(RuleType.DAY_CHANGE_ABS, 20)]
    assert evaluate_rules(rules, series) == evaluate_rules(rules, series)
    assert build_dedupe_key("r1", "P1", DAY) == "r1:P1:2024-03-10"
