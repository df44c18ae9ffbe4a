"""Manual alert status changes."""

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.alerts.states import (
    ACTIVE_STATUSES,
    AlertStatus,
    is_valid_transition,
    resolve_action,
)
from market_alerts.db.models import AlertInstance, AlertStatusLog
from market_alerts.detect.rules import parse_enum
from market_alerts.errors import InvalidTransitionError, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class StatusTransitionGate:
    """Validates and applies operator-driven status changes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def apply(
        self,
        instance_id: str,
        to_status: Union[AlertStatus, str],
        note: Optional[str] = None,
        reason: Optional[str] = None,
        operator: str = "unknown",
        expected_status: Optional[Union[AlertStatus, str]] = None,
    ) -> AlertInstance:
        """
        Move an alert instance to ``to_status`` and record the change.

        The update only lands if the instance still has the status read at
        the start of the call; otherwise a concurrent change won and the call
        is rejected.

        Args:
            instance_id: Alert instance id
            to_status: Target status
            note: Operator note; replaces the stored note when given
            reason: Close reason
            operator: Who made the change
            expected_status: Status the caller believes the instance has

        Returns:
            The updated instance

        Raises:
            ValidationError: Unknown status, or closing without a reason or note
            NotFoundError: Unknown instance id
            InvalidTransitionError: Disallowed or conflicting change
            StoreError: If persistence fails
        """
        target = parse_enum(AlertStatus, to_status, "status")
        expected = (
            parse_enum(AlertStatus, expected_status, "expected_status")
            if expected_status
            else None
        )
        note = _clean(note)
        reason = _clean(reason)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    instance = await session.get(AlertInstance, instance_id)
                    if instance is None:
                        raise NotFoundError("Alert instance not found", instance_id=instance_id)

                    current = AlertStatus(instance.status)
                    if expected is not None and current != expected:
                        raise InvalidTransitionError(
                            f"Alert is {current.value}, expected {expected.value}",
                            instance_id=instance_id,
                            from_status=current.value,
                            to_status=target.value,
                        )
                    if not is_valid_transition(current, target):
                        raise InvalidTransitionError(
                            f"Cannot move alert from {current.value} to {target.value}",
                            instance_id=instance_id,
                            from_status=current.value,
                            to_status=target.value,
                        )
                    if target == AlertStatus.CLOSED and not (reason or note):
                        raise ValidationError(
                            "Closing an alert requires a reason or note",
                            instance_id=instance_id,
                            field="reason",
                        )

                    if current not in ACTIVE_STATUSES and target in ACTIVE_STATUSES:
                        await self._ensure_key_free(session, instance, current, target)

                    previous_reason = instance.closed_reason
                    now = datetime.utcnow()
                    values = {
                        "status": target.value,
                        "closed_reason": (
                            reason or note or instance.closed_reason
                            if target == AlertStatus.CLOSED
                            else None
                        ),
                        "updated_at": now,
                    }
                    if note:
                        values["note"] = note

                    try:
                        result = await session.execute(
                            update(AlertInstance)
                            .where(
                                AlertInstance.id == instance_id,
                                AlertInstance.status == current.value,
                            )
                            .values(**values)
                            .execution_options(synchronize_session=False)
                        )
                    except IntegrityError as e:
                        # Another run activated the same key between the check and the update
                        raise InvalidTransitionError(
                            "Another active alert already holds this dedupe key",
                            instance_id=instance_id,
                            dedupe_key=instance.dedupe_key,
                            from_status=current.value,
                            to_status=target.value,
                        ) from e
                    if result.rowcount == 0:
                        raise InvalidTransitionError(
                            "Alert was changed concurrently",
                            instance_id=instance_id,
                            from_status=current.value,
                            to_status=target.value,
                        )

                    reason_changed = values["closed_reason"] != previous_reason
                    if current != target or note or reason_changed:
                        action = resolve_action(current, target)
                        session.add(
                            AlertStatusLog(
                                instance_id=instance_id,
                                action=action.value,
                                from_status=current.value,
                                to_status=target.value,
                                operator=operator,
                                note=note,
                                reason=reason,
                                created_at=now,
                            )
                        )
                    await session.flush()
                    await session.refresh(instance)
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to update alert status: {e}",
                instance_id=instance_id,
                to_status=target.value,
            ) from e

        logger.info(
            f"Alert {instance_id} {current.value} -> {target.value} by {operator}",
            extra={"instance_id": instance_id, "operator": operator},
        )
        return instance

    async def _ensure_key_free(
        self,
        session: AsyncSession,
        instance: AlertInstance,
        current: AlertStatus,
        target: AlertStatus,
    ) -> None:
        """Reject reactivation while a newer instance holds the dedupe key."""
        result = await session.execute(
            select(AlertInstance.id)
            .where(
                AlertInstance.dedupe_key == instance.dedupe_key,
                AlertInstance.status.in_([status.value for status in ACTIVE_STATUSES]),
                AlertInstance.id != instance.id,
            )
            .limit(1)
            .with_for_update()
        )
        holder = result.scalar_one_or_none()
        if holder is not None:
            raise InvalidTransitionError(
                f"Alert {holder} is already active for this dedupe key",
                instance_id=instance.id,
                dedupe_key=instance.dedupe_key,
                active_instance_id=holder,
                from_status=current.value,
                to_status=target.value,
            )
