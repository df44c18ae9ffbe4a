"""Tests for rule persistence."""

import json
from decimal import Decimal

import pytest

from conftest import TODAY, add_prices, daily_series
from market_alerts.alerts.service import AlertService
from market_alerts.detect.rules import RuleType
from market_alerts.errors import NotFoundError, ValidationError
from market_alerts.filters import ObservationScope


@pytest.mark.asyncio
async def test_create_get_and_list(rule_store):
    low = await rule_store.create_rule(
        {"name": "Small", "rule_type": "DAY_CHANGE_ABS", "threshold": 5, "priority": 1}
    )
    high = await rule_store.create_rule(
        {"name": "Run", "rule_type": "CONTINUOUS_DAYS", "days": 4, "priority": 7}
    )
    await rule_store.create_rule(
        {"name": "Off", "rule_type": "DAY_CHANGE_PCT", "threshold": 3, "is_active": False}
    )

    assert low.id and low.created_at is not None
    assert (await rule_store.get_rule(high.id)).days == 4

    all_rules = await rule_store.list_rules()
    assert [rule.name for rule in all_rules][:2] == ["Run", "Small"]
    active = await rule_store.list_rules(only_active=True)
    assert {rule.name for rule in active} == {"Run", "Small"}


@pytest.mark.asyncio
async def test_update_merges_and_revalidates(rule_store):
    rule = await rule_store.create_rule(
        {"name": "Move", "rule_type": "DAY_CHANGE_ABS", "threshold": 20}
    )

    updated = await rule_store.update_rule(rule.id, {"severity": "critical", "threshold": 30})
    assert updated.threshold == Decimal("30")
    assert updated.severity.value == "CRITICAL"
    assert updated.name == "Move"

    with pytest.raises(ValidationError):
        await rule_store.update_rule(rule.id, {"rule_type": "CONTINUOUS_DAYS"})

    switched = await rule_store.update_rule(rule.id, {"rule_type": "CONTINUOUS_DAYS", "days": 3})
    assert switched.rule_type == RuleType.CONTINUOUS_DAYS
    assert switched.threshold is None


@pytest.mark.asyncio
async def test_invalid_create_and_unknown_ids(rule_store):
    with pytest.raises(ValidationError):
        await rule_store.create_rule({"name": "Bad", "rule_type": "DAY_CHANGE_ABS"})
    with pytest.raises(NotFoundError):
        await rule_store.get_rule("missing")
    with pytest.raises(NotFoundError):
        await rule_store.update_rule("missing", {"name": "x"})
    with pytest.raises(NotFoundError):
        await rule_store.delete_rule("missing")


@pytest.mark.asyncio
async def test_delete_only_unused_rules(session_factory, rule_store):
    unused = await rule_store.create_rule(
        {"name": "Unused", "rule_type": "DAY_CHANGE_ABS", "threshold": 500}
    )
    used = await rule_store.create_rule(
        {"name": "Used", "rule_type": "DAY_CHANGE_ABS", "threshold": 20}
    )
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    await AlertService(session_factory).evaluate(ObservationScope(days=7), today=TODAY)

    await rule_store.delete_rule(unused.id)
    with pytest.raises(ValidationError):
        await rule_store.delete_rule(used.id)
    assert [rule.id for rule in await rule_store.list_rules()] == [used.id]


@pytest.mark.asyncio
async def test_import_legacy_rules_is_idempotent(rule_store):
    rows = [
        {
            "id": 1,
            "description": "Corn spike",
            "targetValue": json.dumps({"type": "DAY_CHANGE_ABS", "threshold": 20}),
            "priority": 2,
            "isActive": True,
        },
        {
            "id": 2,
            "pattern": "run",
            "targetValue": json.dumps({"type": "CONTINUOUS_DAYS", "days": 3, "direction": "DOWN"}),
        },
        {"id": 3, "targetValue": "{broken"},
        {"id": 4, "description": "No threshold", "targetValue": json.dumps({"type": "DAY_CHANGE_PCT"})},
    ]

    assert await rule_store.import_legacy_rules(rows) == 2
    rows[0]["targetValue"] = json.dumps({"type": "DAY_CHANGE_ABS", "threshold": 35})
    assert await rule_store.import_legacy_rules(rows) == 2

    rules = {rule.legacy_rule_id: rule for rule in await rule_store.list_rules()}
    assert set(rules) == {"1", "2"}
    assert rules["1"].threshold == Decimal("35")
    assert rules["1"].name == "Corn spike"
    assert rules["2"].name == "run"
    assert rules["2"].direction.value == "DOWN"
