"""Read-only access to price observations."""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.db.models import PriceData
from market_alerts.errors import StoreError
from market_alerts.filters import ObservationScope, PointType
from market_alerts.logging_config import log_slow_operation

logger = logging.getLogger(__name__)

REGIONAL_SOURCE_TYPE = "REGIONAL"


@dataclass(frozen=True)
class PriceObservation:
    """A single price observation as the engine sees it."""

    point_key: str
    commodity: str
    effective_date: date
    created_at: datetime
    price: Decimal
    day_change: Optional[Decimal] = None
    note: Optional[str] = None
    point_name: str = ""
    point_type: str = PointType.REGION.value
    region_label: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    location: str = ""


def build_point_key(
    collection_point_id: Optional[str],
    region_code: Optional[str],
    location: str,
) -> str:
    """Point id, or a synthesized regional key when the row has none."""
    if collection_point_id:
        return collection_point_id
    return f"REGIONAL:{region_code or 'NA'}:{location}"


def observation_from_record(record: PriceData) -> PriceObservation:
    """Map a stored price row onto the engine's observation type."""
    return PriceObservation(
        point_key=build_point_key(
            record.collection_point_id, record.region_code, record.location
        ),
        commodity=record.commodity,
        effective_date=record.effective_date,
        created_at=record.created_at,
        price=Decimal(record.price),
        day_change=Decimal(record.day_change) if record.day_change is not None else None,
        note=record.note,
        point_name=record.point_name or record.location,
        point_type=record.point_type or PointType.REGION.value,
        region_label=record.region_label or record.city or record.province,
        province=record.province,
        city=record.city,
        district=record.district,
        location=record.location,
    )


def group_observations(
    observations: list[PriceObservation],
) -> dict[str, list[PriceObservation]]:
    """
    Group observations into per-point series.

    Each series is sorted ascending by effective date, then submission time.
    Points keep the order in which they first appear.
    """
    series: dict[str, list[PriceObservation]] = {}
    for observation in observations:
        series.setdefault(observation.point_key, []).append(observation)
    for items in series.values():
        items.sort(key=lambda item: (item.effective_date, item.created_at))
    return series


def scope_conditions(
    scope: ObservationScope,
    start: Optional[date],
    end: Optional[date],
) -> list:
    """SQL conditions on ``PriceData`` for everything in the scope."""
    conditions = []

    candidates = scope.commodity_candidates()
    if candidates:
        conditions.append(PriceData.commodity.in_(candidates))
    if start:
        conditions.append(PriceData.effective_date >= start)
    if end:
        conditions.append(PriceData.effective_date <= end)
    if scope.region_code:
        conditions.append(PriceData.region_code == scope.region_code)
    if scope.sub_types:
        conditions.append(PriceData.sub_type.in_(scope.sub_types))
    if scope.point_ids:
        conditions.append(PriceData.collection_point_id.in_(scope.point_ids))

    statuses = scope.review_scope.statuses()
    if statuses:
        conditions.append(PriceData.review_status.in_(statuses))
    methods = scope.source_scope.input_methods()
    if methods:
        conditions.append(PriceData.input_method.in_(methods))

    if scope.point_types:
        point_types = [point_type.value for point_type in scope.point_types]
        type_conditions = [PriceData.point_type.in_(point_types)]
        # Regional rows stand in for REGION points
        if PointType.REGION in scope.point_types:
            type_conditions.append(PriceData.source_type == REGIONAL_SOURCE_TYPE)
        conditions.append(or_(*type_conditions))

    return conditions


class ObservationStore:
    """Loads observations for a scope from the price table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_observations(
        self,
        scope: ObservationScope,
        today: Optional[date] = None,
    ) -> list[PriceObservation]:
        """
        List observations in scope, oldest first.

        Args:
            scope: Filter to apply
            today: Reference day used when the scope has no end date

        Returns:
            Observations ordered by effective date then submission time

        Raises:
            StoreError: If the query fails
        """
        started_at = time.perf_counter()
        start, end = scope.resolve_window(today)
        conditions = scope_conditions(scope, start, end)

        query = select(PriceData).order_by(
            PriceData.effective_date.asc(), PriceData.created_at.asc()
        )
        if conditions:
            query = query.where(and_(*conditions))

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to load observations: {e}", commodity=scope.commodity
            ) from e

        observations = [observation_from_record(record) for record in records]
        log_slow_operation(
            logger,
            "list_observations",
            started_at,
            commodity=scope.commodity,
            rows=len(observations),
        )
        return observations

    async def date_bounds(
        self,
        scope: ObservationScope,
        end: Optional[date] = None,
    ) -> tuple[Optional[date], Optional[date]]:
        """Earliest and latest effective dates in scope, ignoring its window."""
        conditions = scope_conditions(scope, None, end)
        query = select(
            func.min(PriceData.effective_date), func.max(PriceData.effective_date)
        )
        if conditions:
            query = query.where(and_(*conditions))

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                earliest, latest = result.one()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to load observation dates: {e}", commodity=scope.commodity
            ) from e
        return earliest, latest
