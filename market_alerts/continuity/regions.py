"""Regional window statistics over price observations."""

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional

import numpy as np

from market_alerts.observations.store import PriceObservation

REGION_LEVELS = ("province", "city", "district")
DEFAULT_REGION_LEVEL = "city"

REGION_WINDOWS = ("7", "30", "90", "all")
DEFAULT_REGION_WINDOW = "30"

# Fallback window length for "all" when nothing bounds its start
FALLBACK_WINDOW_DAYS = 30

OTHER_REGION = "Other"


def normalize_level(level: Optional[str]) -> str:
    value = (level or "").strip().lower()
    return value if value in REGION_LEVELS else DEFAULT_REGION_LEVEL


def normalize_window(window: Optional[str]) -> str:
    value = str(window or "").strip().lower()
    return value if value in REGION_WINDOWS else DEFAULT_REGION_WINDOW


def region_name(observation: PriceObservation, level: str = DEFAULT_REGION_LEVEL) -> str:
    """Name of the region an observation falls in at the given level."""
    level = normalize_level(level)
    if level == "province":
        candidates = (observation.province, observation.location)
    elif level == "district":
        candidates = (observation.district, observation.city, observation.location)
    else:
        candidates = (observation.city, observation.province, observation.location)
    for candidate in candidates:
        if candidate:
            return candidate
    return OTHER_REGION


@dataclass
class RegionWindow:
    start: date
    end: date
    expected_days: int
    label: str
    prev_start: Optional[date] = None
    prev_end: Optional[date] = None

    @property
    def has_previous(self) -> bool:
        return self.prev_start is not None


def resolve_region_window(
    window_end: date,
    window: Optional[str] = DEFAULT_REGION_WINDOW,
    start_date: Optional[date] = None,
    earliest: Optional[date] = None,
) -> RegionWindow:
    """
    Resolve the current and previous comparison windows.

    A fixed window of ``n`` days covers ``[end - (n - 1), end]`` and is
    compared with the ``n`` days right before it. ``"all"`` starts at
    ``start_date``, else at the earliest observation, and has no previous
    window.
    """
    window = normalize_window(window)
    if window == "all":
        start = start_date or earliest or window_end - timedelta(days=FALLBACK_WINDOW_DAYS - 1)
        return RegionWindow(
            start=start,
            end=window_end,
            expected_days=max(1, (window_end - start).days + 1),
            label="selected range",
        )

    days = int(window)
    start = window_end - timedelta(days=days - 1)
    prev_end = start - timedelta(days=1)
    return RegionWindow(
        start=start,
        end=window_end,
        expected_days=days,
        label=f"last {days} days",
        prev_start=prev_end - timedelta(days=days - 1),
        prev_end=prev_end,
    )


def price_quartiles(prices: list[float]) -> tuple[float, float, float]:
    """Q1, median and Q3 with linear interpolation between ranks."""
    if not prices:
        return 0.0, 0.0, 0.0
    q1, median, q3 = np.percentile(np.asarray(prices, dtype=float), [25, 50, 75])
    return float(q1), float(median), float(q3)


@dataclass
class RegionStats:
    region: str
    count: int
    avg_price: float
    min_price: float
    max_price: float
    q1: float
    median: float
    q3: float
    std: float
    volatility: float
    missing_rate: float
    latest_date: date
    has_prev: bool
    delta: float
    delta_pct: float


@dataclass
class RegionSummary:
    regions: list[RegionStats] = field(default_factory=list)
    overall_avg: Optional[float] = None
    min_avg: float = 0.0
    max_avg: float = 0.0
    range_min: float = 0.0
    range_max: float = 0.0
    window_label: str = ""
    expected_days: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _group_by_region(
    observations: list[PriceObservation],
    level: str,
    start: date,
    end: date,
) -> dict[str, list[PriceObservation]]:
    groups: dict[str, list[PriceObservation]] = {}
    for observation in observations:
        if start <= observation.effective_date <= end:
            groups.setdefault(region_name(observation, level), []).append(observation)
    return groups


def compute_region_stats(
    observations: list[PriceObservation],
    level: Optional[str] = DEFAULT_REGION_LEVEL,
    window: Optional[str] = DEFAULT_REGION_WINDOW,
    end_date: Optional[date] = None,
    start_date: Optional[date] = None,
    today: Optional[date] = None,
) -> RegionSummary:
    """
    Per-region price statistics for the current window, compared with the
    previous window of the same length.

    Args:
        observations: Observations covering both windows
        level: province, city or district
        window: "7", "30", "90" or "all"
        end_date: Window end; defaults to the latest observation date
        start_date: Start of an "all" window
        today: Window end when there is neither an end date nor data

    Returns:
        RegionSummary with one entry per region, largest average first
    """
    level = normalize_level(level)
    dates = [observation.effective_date for observation in observations]
    window_end = end_date or (max(dates) if dates else None) or today or date.today()
    resolved = resolve_region_window(
        window_end, window, start_date, min(dates) if dates else None
    )

    current = _group_by_region(observations, level, resolved.start, resolved.end)
    previous = (
        _group_by_region(observations, level, resolved.prev_start, resolved.prev_end)
        if resolved.has_previous
        else {}
    )

    regions: list[RegionStats] = []
    for name, items in current.items():
        prices = np.asarray([float(item.price) for item in items], dtype=float)
        avg_price = float(prices.mean())
        min_price = float(prices.min())
        max_price = float(prices.max())
        q1, median, q3 = price_quartiles(prices.tolist())

        prev_items = previous.get(name)
        has_prev = bool(prev_items)
        prev_avg = float(np.mean([float(item.price) for item in prev_items])) if has_prev else 0.0
        delta = avg_price - prev_avg if has_prev else 0.0
        unique_days = len({item.effective_date for item in items})

        regions.append(
            RegionStats(
                region=name,
                count=len(items),
                avg_price=avg_price,
                min_price=min_price,
                max_price=max_price,
                q1=q1,
                median=median,
                q3=q3,
                std=float(prices.std()),
                volatility=(max_price - min_price) / avg_price if avg_price else 0.0,
                missing_rate=1 - unique_days / resolved.expected_days,
                latest_date=max(item.effective_date for item in items),
                has_prev=has_prev,
                delta=delta,
                delta_pct=delta / prev_avg * 100 if has_prev and prev_avg else 0.0,
            )
        )

    regions.sort(key=lambda item: item.avg_price, reverse=True)
    averages = [item.avg_price for item in regions]
    return RegionSummary(
        regions=regions,
        overall_avg=sum(averages) / len(averages) if averages else None,
        min_avg=min(averages, default=0.0),
        max_avg=max(averages, default=0.0),
        range_min=min((item.min_price for item in regions), default=0.0),
        range_max=max((item.max_price for item in regions), default=0.0),
        window_label=resolved.label,
        expected_days=resolved.expected_days,
        start_date=resolved.start,
        end_date=resolved.end,
    )


def point_distribution(series: dict[str, list[PriceObservation]]) -> list[dict]:
    """Box-plot figures of each point's prices."""
    distribution = []
    for point_key, items in series.items():
        if not items:
            continue
        prices = [float(item.price) for item in items]
        q1, median, q3 = price_quartiles(prices)
        latest = items[-1]
        distribution.append(
            {
                "id": point_key,
                "name": latest.point_name or latest.location,
                "min": min(prices),
                "max": max(prices),
                "q1": q1,
                "median": median,
                "q3": q3,
                "avg": sum(prices) / len(prices),
            }
        )
    return distribution
