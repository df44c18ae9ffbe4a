"""Shared fixtures: a file-backed SQLite database per test."""

from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from market_alerts.db.models import Base, PriceData
from market_alerts.detect.rule_store import RuleStore

TODAY = date(2024, 3, 10)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'market_alerts.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def rule_store(session_factory):
    return RuleStore(session_factory)


async def add_prices(session_factory, rows: list[dict]) -> None:
    """Insert price rows; each row needs at least effective_date and price."""
    async with session_factory() as session:
        async with session.begin():
            for row in rows:
                effective_date = row["effective_date"]
                values = {
                    "collection_point_id": "P1",
                    "point_name": "North Port",
                    "point_type": "PORT",
                    "commodity": "CORN",
                    "location": "Dalian",
                    "province": "Liaoning",
                    "city": "Dalian",
                    "review_status": "APPROVED",
                    "created_at": datetime.combine(effective_date, time(10, 0)),
                    **row,
                }
                values["price"] = Decimal(str(values["price"]))
                if values.get("day_change") is not None:
                    values["day_change"] = Decimal(str(values["day_change"]))
                session.add(PriceData(**values))


def daily_series(point_id: str, prices: list, end: date = TODAY, **extra) -> list[dict]:
    """Rows for consecutive days ending at ``end``, day change from the previous price."""
    start = end - timedelta(days=len(prices) - 1)
    rows = []
    previous = None
    for offset, price in enumerate(prices):
        rows.append(
            {
                "collection_point_id": point_id,
                "effective_date": start + timedelta(days=offset),
                "price": price,
                "day_change": (price - previous) if previous is not None else 0,
                **extra,
            }
        )
        previous = price
    return rows
