"""Tests for structured logging."""

import json
import logging
import time

from market_alerts.config import settings
from market_alerts.logging_config import AlertJsonFormatter, log_slow_operation


def _record(**extra):
    record = logging.LogRecord(
        "market_alerts.alerts.reconciler", logging.ERROR, "reconciler.py", 42, "boom", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_alert_identifiers_are_grouped():
    formatter = AlertJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    payload = json.loads(
        formatter.format(_record(instance_id="abc", dedupe_key="r1:P1:2024-03-10", operator="bob"))
    )

    assert payload["message"] == "boom"
    assert payload["level"] == "ERROR"
    assert payload["service"] == "market_alerts"
    assert payload["source"] == "reconciler.py:42"
    assert payload["alert"] == {
        "instance_id": "abc",
        "dedupe_key": "r1:P1:2024-03-10",
        "operator": "bob",
    }
    assert "instance_id" not in payload


def test_error_context_exposes_error_type():
    formatter = AlertJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    payload = json.loads(
        formatter.format(_record(error_context={"error": "StoreError", "message": "down"}))
    )
    assert payload["error_type"] == "StoreError"
    assert "alert" not in payload


def test_slow_operation_warns(caplog, monkeypatch):
    monkeypatch.setattr(settings, "slow_operation_ms", 0)
    logger = logging.getLogger("market_alerts.test")

    with caplog.at_level(logging.WARNING, logger="market_alerts.test"):
        elapsed = log_slow_operation(logger, "evaluate", time.perf_counter() - 1, total=3)

    assert elapsed >= 1000
    assert caplog.records[0].operation == "evaluate"
    assert caplog.records[0].total == 3
