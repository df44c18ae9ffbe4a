"""Store-backed continuity health and regional analytics."""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.continuity.regions import (
    RegionSummary,
    compute_region_stats,
    normalize_level,
    normalize_window,
    point_distribution,
    resolve_region_window,
)
from market_alerts.continuity.scorer import (
    ContinuityHealthScore,
    expected_days_between,
    score_points,
    summarize_scores,
)
from market_alerts.filters import ObservationScope
from market_alerts.logging_config import log_slow_operation
from market_alerts.metrics import record_continuity_request
from market_alerts.observations.store import ObservationStore, group_observations

logger = logging.getLogger(__name__)


@dataclass
class ContinuityReport:
    summary: dict
    points: list[ContinuityHealthScore] = field(default_factory=list)


@dataclass
class RegionAnalytics:
    level: str
    window: str
    regions: RegionSummary
    distribution: list[dict] = field(default_factory=list)


class ContinuityService:
    """Data-quality views over the observation store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        observation_store: Optional[ObservationStore] = None,
    ):
        self.observations = observation_store or ObservationStore(session_factory)

    async def get_continuity_health(
        self,
        scope: ObservationScope,
        today: Optional[date] = None,
    ) -> ContinuityReport:
        """
        Score every point in scope over the scope's window.

        Points named in ``scope.point_ids`` that reported nothing are
        included with a score of 0.

        Raises:
            StoreError: If loading observations fails
        """
        started_at = time.perf_counter()
        start, end = scope.resolve_window(today)
        observations = await self.observations.list_observations(scope, today)

        expected_days = expected_days_between(start, end)
        points = score_points(
            observations, start, end, expected_days, point_keys=scope.point_ids
        )
        summary = summarize_scores(points, expected_days, start, end)

        record_continuity_request("health", summary["overall_score"])
        log_slow_operation(
            logger,
            "get_continuity_health",
            started_at,
            commodity=scope.commodity,
            points=len(points),
        )
        return ContinuityReport(summary=summary, points=points)

    async def get_region_analytics(
        self,
        scope: ObservationScope,
        level: Optional[str] = None,
        window: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RegionAnalytics:
        """
        Per-region statistics for a fixed or open window.

        The window ends at the scope's end date, else at the latest
        observation in scope, else today.

        Raises:
            StoreError: If loading observations fails
        """
        started_at = time.perf_counter()
        level = normalize_level(level)
        window = normalize_window(window)

        earliest, latest = await self.observations.date_bounds(scope, scope.end_date)
        window_end = scope.end_date or latest or today or date.today()
        resolved = resolve_region_window(window_end, window, scope.start_date, earliest)

        window_scope = scope.model_copy(
            update={
                "start_date": resolved.prev_start or resolved.start,
                "end_date": resolved.end,
            }
        )
        observations = await self.observations.list_observations(window_scope, today)

        regions = compute_region_stats(
            observations,
            level,
            window,
            end_date=resolved.end,
            start_date=resolved.start,
        )
        in_window = [
            item for item in observations if resolved.start <= item.effective_date <= resolved.end
        ]
        distribution = point_distribution(group_observations(in_window))

        record_continuity_request("regions")
        log_slow_operation(
            logger,
            "get_region_analytics",
            started_at,
            level=level,
            window=window,
            rows=len(observations),
        )
        return RegionAnalytics(
            level=level, window=window, regions=regions, distribution=distribution
        )
