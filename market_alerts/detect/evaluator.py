"""Rule evaluation over per-point price series.

Everything here is a pure function of its arguments: the same rules and
series always produce the same hits with the same dedupe keys.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from market_alerts.detect.rules import AlertRule, RuleDirection, RuleType, Severity, order_rules
from market_alerts.observations.store import PriceObservation

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class AlertHit:
    """A rule firing on one point for its latest observation."""

    dedupe_key: str
    rule_id: str
    rule_name: str
    rule_type: RuleType
    severity: Severity
    point_key: str
    point_name: str
    point_type: str
    region_label: Optional[str]
    commodity: str
    trigger_date: date
    trigger_value: Decimal
    threshold_value: Decimal
    message: str


def build_dedupe_key(rule_id: str, point_key: str, trigger_date: date) -> str:
    """Idempotency key: one alert lifecycle per rule, point and day."""
    return f"{rule_id}:{point_key}:{trigger_date.isoformat()}"


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def latest_price_mean(series: dict[str, list[PriceObservation]]) -> Decimal:
    """Mean of every point's latest price across the batch (0 when empty)."""
    latest_prices = [items[-1].price for items in series.values() if items]
    if not latest_prices:
        return ZERO
    return sum(latest_prices, ZERO) / len(latest_prices)


def _check_rule(
    rule: AlertRule,
    series: list[PriceObservation],
    mean_latest_price: Decimal,
) -> Optional[tuple[Decimal, Decimal, str]]:
    """
    Check one rule against one point's series.

    Returns:
        ``(trigger_value, threshold_value, message)`` on a hit, else None
    """
    latest = series[-1]
    name = latest.point_name or latest.point_key
    threshold = rule.threshold if rule.threshold is not None else ZERO
    change = latest.day_change if latest.day_change is not None else ZERO

    if rule.rule_type == RuleType.DAY_CHANGE_ABS:
        value = abs(change)
        if value >= threshold:
            sign = "+" if change > 0 else ""
            return value, threshold, f"{name} day change {sign}{_round(change)}"
        return None

    if rule.rule_type == RuleType.DAY_CHANGE_PCT:
        value = abs(change) / latest.price * HUNDRED if latest.price else ZERO
        if value >= threshold:
            return value, threshold, f"{name} day move {_round(value)}%"
        return None

    if rule.rule_type == RuleType.DEVIATION_FROM_MEAN_PCT:
        value = (
            abs(latest.price - mean_latest_price) / mean_latest_price * HUNDRED
            if mean_latest_price
            else ZERO
        )
        if value >= threshold:
            return value, threshold, f"{name} deviates {_round(value)}% from the mean"
        return None

    if rule.rule_type == RuleType.CONTINUOUS_DAYS:
        window = max(2, rule.days or 3)
        recent = series[-window:]
        if len(recent) < window:
            return None
        pairs = list(zip(recent, recent[1:]))
        up = all(current.price >= previous.price for previous, current in pairs)
        down = all(current.price <= previous.price for previous, current in pairs)
        if rule.direction == RuleDirection.UP:
            hit = up
        elif rule.direction == RuleDirection.DOWN:
            hit = down
        else:
            hit = up or down
        if not hit:
            return None
        trend = "rose" if up else "fell"
        days = Decimal(window)
        return days, days, f"{name} {trend} for {window} consecutive days"

    return None


def evaluate_rules(
    rules: list[AlertRule],
    series: dict[str, list[PriceObservation]],
    mean_latest_price: Optional[Decimal] = None,
) -> list[AlertHit]:
    """
    Evaluate every active rule against the latest observation of every point.

    Args:
        rules: Rule definitions; inactive ones are ignored
        series: Per-point observations, each sorted ascending
        mean_latest_price: Precomputed cross-point mean of latest prices;
                           computed from ``series`` when omitted

    Returns:
        Hits ordered by point, then by rule priority
    """
    active_rules = order_rules(rules)
    if not active_rules or not series:
        return []

    if mean_latest_price is None:
        mean_latest_price = latest_price_mean(series)

    hits: list[AlertHit] = []
    for point_key, items in series.items():
        if not items:
            continue
        latest = items[-1]
        for rule in active_rules:
            try:
                outcome = _check_rule(rule, items, mean_latest_price)
            except (ArithmeticError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping rule {rule.id} for point {point_key}: {e}",
                    extra={"rule_id": rule.id, "point_key": point_key},
                )
                continue
            if outcome is None:
                continue

            trigger_value, threshold_value, message = outcome
            hits.append(
                AlertHit(
                    dedupe_key=build_dedupe_key(rule.id, point_key, latest.effective_date),
                    rule_id=rule.id,
                    rule_name=rule.name,
                    rule_type=rule.rule_type,
                    severity=rule.severity,
                    point_key=point_key,
                    point_name=latest.point_name or latest.location,
                    point_type=latest.point_type,
                    region_label=latest.region_label,
                    commodity=latest.commodity,
                    trigger_date=latest.effective_date,
                    trigger_value=_round(trigger_value),
                    threshold_value=_round(threshold_value),
                    message=message,
                )
            )

    logger.debug(
        f"Evaluated {len(active_rules)} rules over {len(series)} points: {len(hits)} hits"
    )
    return hits
