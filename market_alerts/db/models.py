"""SQLAlchemy database models."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


# Statuses that keep a dedupe key reserved
ACTIVE_STATUS_SQL = "status IN ('OPEN', 'ACKNOWLEDGED')"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PriceData(Base):
    """Price observation submitted by a collection point or a regional source.

    Owned by the ingestion side; the alerting engine only reads it.
    """

    __tablename__ = "price_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    collection_point_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    point_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    point_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    region_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    region_label: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_type: Mapped[str] = mapped_column(String(32), default="COLLECTION_POINT", nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    review_status: Mapped[str] = mapped_column(String(32), default="PENDING", nullable=False)
    input_method: Mapped[str] = mapped_column(String(32), default="MANUAL_ENTRY", nullable=False)

    commodity: Mapped[str] = mapped_column(String(64), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    day_change: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    province: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    location: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_price_data_commodity_effective_date", "commodity", "effective_date"),
        Index("ix_price_data_collection_point_id", "collection_point_id"),
        Index("ix_price_data_region_code", "region_code"),
    )


class AlertRule(Base):
    """Alert rule configuration."""

    __tablename__ = "market_alert_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    direction: Mapped[str] = mapped_column(String(8), default="BOTH", nullable=False)
    severity: Mapped[str] = mapped_column(String(16), default="MEDIUM", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    legacy_rule_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True
    )  # Row id in the legacy mapping-rule table this rule was imported from
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    instances: Mapped[list["AlertInstance"]] = relationship(
        "AlertInstance", back_populates="rule"
    )

    __table_args__ = (
        Index("ix_market_alert_rules_active_priority", "is_active", "priority"),
    )


class AlertInstance(Base):
    """A materialized alert: one lifecycle per dedupe key."""

    __tablename__ = "market_alert_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("market_alert_rules.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), default="OPEN", nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(256), nullable=False)

    point_id: Mapped[str] = mapped_column(String(256), nullable=False)
    point_name: Mapped[str] = mapped_column(String(128), nullable=False)
    point_type: Mapped[str] = mapped_column(String(32), nullable=False)
    region_label: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    commodity: Mapped[str] = mapped_column(String(64), nullable=False)

    trigger_date: Mapped[date] = mapped_column(Date, nullable=False)
    first_triggered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_triggered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    trigger_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    threshold_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    closed_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    rule: Mapped["AlertRule"] = relationship("AlertRule", back_populates="instances")
    logs: Mapped[list["AlertStatusLog"]] = relationship(
        "AlertStatusLog", back_populates="instance", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_market_alert_instances_rule_created", "rule_id", "created_at"),
        Index(
            "ix_market_alert_instances_status_severity_date",
            "status",
            "severity",
            "trigger_date",
        ),
        Index("ix_market_alert_instances_commodity_date", "commodity", "trigger_date"),
        Index("ix_market_alert_instances_dedupe_key", "dedupe_key"),
        # At most one non-terminal instance per dedupe key
        Index(
            "uq_market_alert_instances_active_dedupe",
            "dedupe_key",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_SQL),
            sqlite_where=text(ACTIVE_STATUS_SQL),
        ),
    )


class AlertStatusLog(Base):
    """Append-only audit row for every alert status change."""

    __tablename__ = "market_alert_status_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("market_alert_instances.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    operator: Mapped[str] = mapped_column(String(128), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    # Relationships
    instance: Mapped["AlertInstance"] = relationship("AlertInstance", back_populates="logs")

    __table_args__ = (
        Index("ix_market_alert_status_logs_instance_created", "instance_id", "created_at"),
        Index("ix_market_alert_status_logs_action_created", "action", "created_at"),
    )
