"""Composite data-continuity score per reporting point."""

from dataclasses import asdict, dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from market_alerts.detect.quality import QualityTag, classify_quality
from market_alerts.observations.store import PriceObservation, group_observations

# Weights of the composite score (sum to 100 at perfect input)
COVERAGE_WEIGHT = 40
TIMELINESS_WEIGHT = 0.25
STABILITY_WEIGHT = 20
PUNCTUALITY_WEIGHT = 15

TIMELINESS_PENALTY_PER_DAY = 10

# An observation is anomalous if either bound is reached
ANOMALY_ABS_CHANGE = Decimal("20")
ANOMALY_PCT_CHANGE = Decimal("5")

HEALTHY_SCORE = 85
RISK_SCORE = 60


@dataclass
class ContinuityHealthScore:
    point_id: str
    point_name: str
    point_type: Optional[str]
    region_label: Optional[str]
    coverage_rate: float
    timeliness_score: float
    anomaly_rate: float
    late_rate: float
    score: int
    grade: str
    missing_days: int
    latest_date: Optional[date]
    record_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def score_grade(score: int) -> str:
    """A >= 85, B >= 70, C >= 60, else D."""
    if score >= 85:
        return "A"
    if score >= 70:
        return "B"
    if score >= 60:
        return "C"
    return "D"


def round_half_up(value: float, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)


def expected_days_between(start: date, end: date) -> int:
    return max(1, (end - start).days + 1)


def is_anomalous(observation: PriceObservation) -> bool:
    change = observation.day_change or Decimal("0")
    change_pct = abs(change / observation.price * 100) if observation.price else Decimal("0")
    return abs(change) >= ANOMALY_ABS_CHANGE or change_pct >= ANOMALY_PCT_CHANGE


def _empty_score(point_id: str, expected_days: int) -> ContinuityHealthScore:
    return ContinuityHealthScore(
        point_id=point_id,
        point_name=point_id,
        point_type=None,
        region_label=None,
        coverage_rate=0.0,
        timeliness_score=0.0,
        anomaly_rate=0.0,
        late_rate=0.0,
        score=0,
        grade="D",
        missing_days=expected_days,
        latest_date=None,
        record_count=0,
    )


def _score_group(
    point_id: str,
    items: list[PriceObservation],
    window_end: date,
    expected_days: int,
) -> ContinuityHealthScore:
    unique_days = {item.effective_date for item in items}
    latest_date = max(unique_days)
    record_count = len(items)

    late_count = sum(
        1
        for item in items
        if classify_quality(item.note, item.effective_date, item.created_at) == QualityTag.LATE
    )
    anomaly_count = sum(1 for item in items if is_anomalous(item))

    coverage_rate = len(unique_days) / expected_days
    late_rate = late_count / record_count
    anomaly_rate = anomaly_count / record_count
    lag_days = max(0, (window_end - latest_date).days)
    timeliness_score = max(0, 100 - lag_days * TIMELINESS_PENALTY_PER_DAY)

    score = int(
        round_half_up(
            coverage_rate * COVERAGE_WEIGHT
            + timeliness_score * TIMELINESS_WEIGHT
            + (1 - anomaly_rate) * STABILITY_WEIGHT
            + (1 - late_rate) * PUNCTUALITY_WEIGHT
        )
    )

    latest = items[-1]
    return ContinuityHealthScore(
        point_id=point_id,
        point_name=latest.point_name or latest.location,
        point_type=latest.point_type,
        region_label=latest.region_label,
        coverage_rate=coverage_rate,
        timeliness_score=float(timeliness_score),
        anomaly_rate=anomaly_rate,
        late_rate=late_rate,
        score=score,
        grade=score_grade(score),
        missing_days=max(0, expected_days - len(unique_days)),
        latest_date=latest_date,
        record_count=record_count,
    )


def score_points(
    observations: list[PriceObservation],
    window_start: date,
    window_end: date,
    expected_days: Optional[int] = None,
    point_keys: Iterable[str] = (),
) -> list[ContinuityHealthScore]:
    """
    Score every reporting point over a window, worst first.

    Args:
        observations: Observations inside the window
        window_start: First day of the window
        window_end: Last day of the window; lag is measured against it
        expected_days: Days a fully covered point reports on; defaults to
                       the window length
        point_keys: Points that must appear even without observations;
                    those score 0 / D

    Returns:
        One score per point, sorted by score ascending
    """
    if expected_days is None:
        expected_days = expected_days_between(window_start, window_end)
    expected_days = max(1, expected_days)

    groups = group_observations(observations)
    scores = [
        _score_group(point_id, items, window_end, expected_days)
        for point_id, items in groups.items()
    ]
    for point_key in point_keys:
        if point_key not in groups:
            scores.append(_empty_score(point_key, expected_days))

    scores.sort(key=lambda item: item.score)
    return scores


def summarize_scores(
    points: list[ContinuityHealthScore],
    expected_days: int,
    window_start: date,
    window_end: date,
) -> dict:
    """Aggregate figures over a list of point scores."""
    count = len(points)

    def mean(values: list[float]) -> float:
        return sum(values) / count if count else 0.0

    return {
        "overall_score": float(round_half_up(mean([p.score for p in points]), 1)),
        "coverage_rate": mean([p.coverage_rate for p in points]),
        "anomaly_rate": mean([p.anomaly_rate for p in points]),
        "late_rate": mean([p.late_rate for p in points]),
        "expected_days": expected_days,
        "point_count": count,
        "healthy_points": sum(1 for p in points if p.score >= HEALTHY_SCORE),
        "risk_points": sum(1 for p in points if p.score < RISK_SCORE),
        "start_date": window_start,
        "end_date": window_end,
    }
