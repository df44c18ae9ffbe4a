"""Tests for evaluation runs and alert reconciliation."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import TODAY, add_prices, daily_series
from market_alerts.alerts.reconciler import AUTO_CLOSE_REASON, AlertReconciler
from market_alerts.alerts.service import AlertService
from market_alerts.db.models import AlertInstance
from market_alerts.detect.evaluator import evaluate_rules
from market_alerts.errors import InvalidTransitionError
from market_alerts.filters import AlertFilter, ObservationScope
from market_alerts.observations.store import ObservationStore, group_observations

SCOPE = ObservationScope(commodity="CORN", days=7)


async def _instances(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(AlertInstance).order_by(AlertInstance.created_at))
        return list(result.scalars().all())


async def _abs_rule(rule_store, threshold=20, **extra):
    return await rule_store.create_rule(
        {"name": "Day move", "rule_type": "DAY_CHANGE_ABS", "threshold": threshold, **extra}
    )


@pytest.mark.asyncio
async def test_first_run_creates_and_second_run_updates(session_factory, rule_store):
    await _abs_rule(rule_store, severity="HIGH")
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)

    first = await service.evaluate(SCOPE, "alice", today=TODAY)
    assert (first.total, first.created, first.updated, first.closed) == (1, 1, 0, 0)

    second = await service.evaluate(SCOPE, "alice", today=TODAY)
    assert (second.total, second.created, second.updated, second.closed) == (1, 0, 1, 0)

    instances = await _instances(session_factory)
    assert len(instances) == 1
    instance = instances[0]
    assert instance.status == "OPEN"
    assert instance.severity == "HIGH"
    assert instance.trigger_date == TODAY
    assert instance.dedupe_key.endswith(f":P1:{TODAY.isoformat()}")

    logs = await service.list_status_logs(instance.id)
    assert [log.action for log in logs] == ["UPDATE_HIT", "CREATE"]
    assert logs[0].from_status == logs[0].to_status == "OPEN"
    assert logs[1].from_status is None
    assert logs[1].operator == "alice"


@pytest.mark.asyncio
async def test_cleared_hit_is_auto_closed(session_factory, rule_store):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)
    await service.evaluate(SCOPE, today=TODAY)

    # Next day the move is small; yesterday's alert no longer hits
    next_day = TODAY + timedelta(days=1)
    await add_prices(
        session_factory,
        [{"collection_point_id": "P1", "effective_date": next_day, "price": 2426, "day_change": 1}],
    )
    result = await service.evaluate(SCOPE, today=next_day)
    assert (result.total, result.created, result.closed) == (0, 0, 1)

    instance = (await _instances(session_factory))[0]
    assert instance.status == "CLOSED"
    assert instance.closed_reason == AUTO_CLOSE_REASON

    logs = await service.list_status_logs(instance.id)
    assert logs[0].action == "AUTO_CLOSE"
    assert logs[0].operator == "system-auto-evaluator"
    assert logs[0].from_status == "OPEN"
    assert logs[0].meta == {"dedupe_key": instance.dedupe_key}

    again = await service.evaluate(SCOPE, today=next_day)
    assert again.closed == 0


@pytest.mark.asyncio
async def test_auto_close_respects_scope(session_factory, rule_store):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    await add_prices(
        session_factory, daily_series("W1", [2800, 2850], commodity="WHEAT", point_name="Mill")
    )
    service = AlertService(session_factory)

    everything = await service.evaluate(ObservationScope(days=7), today=TODAY)
    assert everything.created == 2

    # A corn-only run that hits nothing must leave the wheat alert alone
    await rule_store.update_rule((await rule_store.list_rules())[0].id, {"threshold": 100})
    corn_only = await service.evaluate(SCOPE, today=TODAY)
    assert corn_only.closed == 1

    statuses = {item.commodity: item.status for item in await _instances(session_factory)}
    assert statuses == {"CORN": "CLOSED", "WHEAT": "OPEN"}


@pytest.mark.asyncio
async def test_closed_instance_releases_dedupe_key(session_factory, rule_store):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)
    await service.evaluate(SCOPE, today=TODAY)

    instance = (await _instances(session_factory))[0]
    await service.update_status(instance.id, "CLOSED", reason="handled offline")

    rerun = await service.evaluate(SCOPE, today=TODAY)
    assert (rerun.created, rerun.updated) == (1, 0)

    instances = await _instances(session_factory)
    assert len(instances) == 2
    assert instances[0].dedupe_key == instances[1].dedupe_key
    assert [item.status for item in instances] == ["CLOSED", "OPEN"]


@pytest.mark.asyncio
async def test_acknowledged_instance_keeps_receiving_hits(session_factory, rule_store):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)
    await service.evaluate(SCOPE, today=TODAY)

    instance = (await _instances(session_factory))[0]
    await service.update_status(instance.id, "ACKNOWLEDGED", operator="bob")

    rerun = await service.evaluate(SCOPE, today=TODAY)
    assert (rerun.created, rerun.updated, rerun.closed) == (0, 1, 0)
    assert (await _instances(session_factory))[0].status == "ACKNOWLEDGED"


@pytest.mark.asyncio
async def test_lost_insert_race_is_retried_as_update(session_factory, rule_store, monkeypatch):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    await AlertService(session_factory).evaluate(SCOPE, today=TODAY)

    rules = await rule_store.list_rules(only_active=True)
    observations = await ObservationStore(session_factory).list_observations(SCOPE, TODAY)
    hits = evaluate_rules(rules, group_observations(observations))

    reconciler = AlertReconciler(session_factory)
    original_find = reconciler._find_active
    calls = []

    async def racing_find(session, dedupe_key):
        # The first lookup misses the row a concurrent run just committed
        calls.append(dedupe_key)
        if len(calls) == 1:
            return None
        return await original_find(session, dedupe_key)

    monkeypatch.setattr(reconciler, "_find_active", racing_find)
    result = await reconciler.reconcile(hits, AlertFilter.from_scope(SCOPE), "racer", TODAY)

    assert (result.created, result.updated, result.closed) == (0, 1, 0)
    assert len(calls) == 2
    async with session_factory() as session:
        count = await session.scalar(select(func.count(AlertInstance.id)))
    assert count == 1


@pytest.mark.asyncio
async def test_no_active_rules_closes_open_alerts(session_factory, rule_store):
    rule = await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)
    await service.evaluate(SCOPE, today=TODAY)

    await rule_store.update_rule(rule.id, {"is_active": False})
    result = await service.evaluate(SCOPE, today=TODAY)
    assert (result.total, result.closed) == (0, 1)


@pytest.mark.asyncio
async def test_reopen_blocked_while_newer_instance_is_active(session_factory, rule_store):
    await _abs_rule(rule_store)
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))
    service = AlertService(session_factory)
    await service.evaluate(SCOPE, today=TODAY)

    first = (await _instances(session_factory))[0]
    await service.update_status(first.id, "CLOSED", reason="handled offline")
    await service.evaluate(SCOPE, today=TODAY)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_status(first.id, "OPEN", operator="alice")
    assert exc_info.value.context["dedupe_key"] == first.dedupe_key
    assert exc_info.value.context["from_status"] == "CLOSED"

    statuses = [item.status for item in await _instances(session_factory)]
    assert statuses == ["CLOSED", "OPEN"]
