"""Turns evaluation hits into persisted alert instances and audit rows."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.alerts.queries import alert_conditions
from market_alerts.alerts.states import ACTIVE_STATUSES, AlertAction, AlertStatus
from market_alerts.config import settings
from market_alerts.db.models import AlertInstance, AlertStatusLog
from market_alerts.detect.evaluator import AlertHit
from market_alerts.errors import StoreError
from market_alerts.filters import AlertFilter

logger = logging.getLogger(__name__)

AUTO_CLOSE_REASON = "conditions cleared, auto-closed by system"

_ACTIVE_VALUES = [status.value for status in ACTIVE_STATUSES]


@dataclass
class ReconcileResult:
    """Counts of instance mutations made by one reconcile run."""

    created: int = 0
    updated: int = 0
    closed: int = 0


class AlertReconciler:
    """
    Persists hits idempotently.

    Each hit is handled in its own transaction: the lookup of the active
    instance for its dedupe key, the create/update and the audit row commit
    together or not at all. The partial unique index on active dedupe keys
    turns a lost race with a concurrent run into an IntegrityError, after
    which the hit is retried and lands on the winner's instance.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        auto_close_operator: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.auto_close_operator = auto_close_operator or settings.auto_close_operator

    async def reconcile(
        self,
        hits: list[AlertHit],
        scope: AlertFilter,
        operator: str,
        today: Optional[date] = None,
    ) -> ReconcileResult:
        """
        Apply a batch of hits and auto-close instances that stopped hitting.

        Args:
            hits: Hits from one evaluation run
            scope: The scope the run evaluated; only instances inside it
                   are candidates for auto-closing
            operator: Operator recorded on CREATE / UPDATE_HIT rows
            today: Reference day for resolving the scope window

        Returns:
            ReconcileResult with created/updated/closed counts

        Raises:
            StoreError: If persistence fails
        """
        result = ReconcileResult()

        for hit in hits:
            action = await self._apply_hit(hit, operator)
            if action == AlertAction.CREATE:
                result.created += 1
            else:
                result.updated += 1

        active_keys = {hit.dedupe_key for hit in hits}
        result.closed = await self._close_stale(scope, active_keys, today)

        logger.info(
            f"Reconciled {len(hits)} hits: {result.created} created, "
            f"{result.updated} updated, {result.closed} auto-closed"
        )
        return result

    async def _apply_hit(self, hit: AlertHit, operator: str) -> AlertAction:
        try:
            return await self._upsert_hit(hit, operator)
        except IntegrityError:
            logger.info(
                f"Concurrent insert for {hit.dedupe_key}, retrying as update",
                extra={"dedupe_key": hit.dedupe_key},
            )
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to persist alert hit: {e}", dedupe_key=hit.dedupe_key
            ) from e

        try:
            return await self._upsert_hit(hit, operator)
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to persist alert hit after retry: {e}", dedupe_key=hit.dedupe_key
            ) from e

    async def _find_active(self, session: AsyncSession, dedupe_key: str) -> Optional[AlertInstance]:
        result = await session.execute(
            select(AlertInstance)
            .where(
                AlertInstance.dedupe_key == dedupe_key,
                AlertInstance.status.in_(_ACTIVE_VALUES),
            )
            .order_by(AlertInstance.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _upsert_hit(self, hit: AlertHit, operator: str) -> AlertAction:
        now = datetime.utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                existing = await self._find_active(session, hit.dedupe_key)

                if existing is not None:
                    existing.severity = hit.severity.value
                    existing.point_name = hit.point_name
                    existing.point_type = hit.point_type
                    existing.region_label = hit.region_label
                    existing.commodity = hit.commodity
                    existing.trigger_date = hit.trigger_date
                    existing.last_triggered_at = now
                    existing.trigger_value = hit.trigger_value
                    existing.threshold_value = hit.threshold_value
                    existing.message = hit.message
                    existing.updated_at = now
                    session.add(
                        AlertStatusLog(
                            instance_id=existing.id,
                            action=AlertAction.UPDATE_HIT.value,
                            from_status=existing.status,
                            to_status=existing.status,
                            operator=operator,
                            meta={
                                "trigger_value": str(hit.trigger_value),
                                "threshold_value": str(hit.threshold_value),
                                "message": hit.message,
                            },
                            created_at=now,
                        )
                    )
                    return AlertAction.UPDATE_HIT

                instance = AlertInstance(
                    id=str(uuid.uuid4()),
                    rule_id=hit.rule_id,
                    status=AlertStatus.OPEN.value,
                    severity=hit.severity.value,
                    dedupe_key=hit.dedupe_key,
                    point_id=hit.point_key,
                    point_name=hit.point_name,
                    point_type=hit.point_type,
                    region_label=hit.region_label,
                    commodity=hit.commodity,
                    trigger_date=hit.trigger_date,
                    first_triggered_at=now,
                    last_triggered_at=now,
                    trigger_value=hit.trigger_value,
                    threshold_value=hit.threshold_value,
                    message=hit.message,
                    created_at=now,
                    updated_at=now,
                )
                session.add(instance)
                await session.flush()
                session.add(
                    AlertStatusLog(
                        instance_id=instance.id,
                        action=AlertAction.CREATE.value,
                        from_status=None,
                        to_status=AlertStatus.OPEN.value,
                        operator=operator,
                        meta={
                            "rule_type": hit.rule_type.value,
                            "trigger_value": str(hit.trigger_value),
                            "threshold_value": str(hit.threshold_value),
                        },
                        created_at=now,
                    )
                )
                return AlertAction.CREATE

    async def _close_stale(
        self,
        scope: AlertFilter,
        active_keys: set[str],
        today: Optional[date],
    ) -> int:
        """Close active instances in scope whose dedupe key did not hit."""
        start, end = scope.resolve_window(today)
        conditions = alert_conditions(scope, start, end)
        conditions.append(AlertInstance.status.in_(_ACTIVE_VALUES))
        if active_keys:
            conditions.append(AlertInstance.dedupe_key.notin_(sorted(active_keys)))

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(
                        AlertInstance.id, AlertInstance.status, AlertInstance.dedupe_key
                    ).where(and_(*conditions))
                )
                stale = result.all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query stale alerts: {e}") from e

        closed = 0
        for instance_id, status, dedupe_key in stale:
            try:
                if await self._auto_close(instance_id, status, dedupe_key):
                    closed += 1
            except SQLAlchemyError as e:
                raise StoreError(
                    f"Failed to auto-close alert: {e}",
                    instance_id=instance_id,
                    dedupe_key=dedupe_key,
                ) from e
        return closed

    async def _auto_close(self, instance_id: str, status: str, dedupe_key: str) -> bool:
        now = datetime.utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                # Skip instances an operator changed since the stale query
                result = await session.execute(
                    update(AlertInstance)
                    .where(AlertInstance.id == instance_id, AlertInstance.status == status)
                    .values(
                        status=AlertStatus.CLOSED.value,
                        closed_reason=AUTO_CLOSE_REASON,
                        updated_at=now,
                    )
                )
                if result.rowcount == 0:
                    logger.info(
                        f"Alert {instance_id} changed concurrently, not auto-closing",
                        extra={"instance_id": instance_id},
                    )
                    return False

                session.add(
                    AlertStatusLog(
                        instance_id=instance_id,
                        action=AlertAction.AUTO_CLOSE.value,
                        from_status=status,
                        to_status=AlertStatus.CLOSED.value,
                        operator=self.auto_close_operator,
                        reason=AUTO_CLOSE_REASON,
                        meta={"dedupe_key": dedupe_key},
                        created_at=now,
                    )
                )
        return True
