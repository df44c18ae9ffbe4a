"""Persistence for alert rule definitions."""

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.db.models import AlertInstance
from market_alerts.db.models import AlertRule as AlertRuleModel
from market_alerts.detect.rules import AlertRule, parse_legacy_payload
from market_alerts.errors import NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)


def _apply(model: AlertRuleModel, rule: AlertRule) -> None:
    model.name = rule.name
    model.rule_type = rule.rule_type.value
    model.threshold = rule.threshold
    model.days = rule.days
    model.direction = rule.direction.value
    model.severity = rule.severity.value
    model.priority = rule.priority
    model.is_active = rule.is_active


class RuleStore:
    """CRUD over ``market_alert_rules`` with validation on every write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_rules(self, only_active: bool = False) -> list[AlertRule]:
        """List rules, highest priority first, newest first within a priority."""
        query = select(AlertRuleModel).order_by(
            AlertRuleModel.priority.desc(), AlertRuleModel.created_at.desc()
        )
        if only_active:
            query = query.where(AlertRuleModel.is_active.is_(True))
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [AlertRule.from_model(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list alert rules: {e}") from e

    async def get_rule(self, rule_id: str) -> AlertRule:
        try:
            async with self.session_factory() as session:
                model = await session.get(AlertRuleModel, rule_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load alert rule: {e}", rule_id=rule_id) from e
        if model is None:
            raise NotFoundError("Alert rule not found", rule_id=rule_id)
        return AlertRule.from_model(model)

    async def create_rule(self, data: dict[str, Any]) -> AlertRule:
        """
        Validate and store a new rule.

        Raises:
            ValidationError: If the definition is malformed
        """
        rule = AlertRule.from_dict(data)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    model = AlertRuleModel()
                    _apply(model, rule)
                    session.add(model)
                    await session.flush()
                    created = AlertRule.from_model(model)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create alert rule: {e}") from e

        logger.info(f"Created alert rule {created.id} ({created.rule_type.value})")
        return created

    async def update_rule(self, rule_id: str, data: dict[str, Any]) -> AlertRule:
        """
        Merge a partial update onto the stored rule and re-validate the result.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If the merged definition is malformed
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    model = await session.get(AlertRuleModel, rule_id)
                    if model is None:
                        raise NotFoundError("Alert rule not found", rule_id=rule_id)

                    merged = AlertRule.from_model(model).to_dict()
                    merged.update({key: value for key, value in data.items() if value is not None})
                    rule = AlertRule.from_dict(merged)
                    _apply(model, rule)
                    await session.flush()
                    updated = AlertRule.from_model(model)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update alert rule: {e}", rule_id=rule_id) from e

        logger.info(f"Updated alert rule {rule_id}")
        return updated

    async def delete_rule(self, rule_id: str) -> None:
        """
        Delete a rule that has never produced an alert.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If alert instances still reference the rule
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    model = await session.get(AlertRuleModel, rule_id)
                    if model is None:
                        raise NotFoundError("Alert rule not found", rule_id=rule_id)

                    result = await session.execute(
                        select(func.count(AlertInstance.id)).where(
                            AlertInstance.rule_id == rule_id
                        )
                    )
                    if (result.scalar() or 0) > 0:
                        raise ValidationError(
                            "Alert rule has alert instances; deactivate it instead",
                            rule_id=rule_id,
                        )
                    await session.delete(model)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete alert rule: {e}", rule_id=rule_id) from e

        logger.info(f"Deleted alert rule {rule_id}")

    async def import_legacy_rules(self, rows: list[dict[str, Any]]) -> int:
        """
        Upsert rules from legacy mapping-rule rows, keyed by legacy id.

        Rows with unusable payloads are skipped.

        Returns:
            Number of rules created or updated
        """
        imported = 0
        for row in rows:
            try:
                rule: Optional[AlertRule] = parse_legacy_payload(row)
            except ValidationError as e:
                logger.warning(f"Skipping legacy rule {row.get('id')}: {e.message}")
                continue
            if rule is None:
                logger.warning(f"Skipping legacy rule {row.get('id')}: unreadable payload")
                continue

            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(AlertRuleModel).where(
                                AlertRuleModel.legacy_rule_id == rule.legacy_rule_id
                            )
                        )
                        model = result.scalar_one_or_none()
                        if model is None:
                            model = AlertRuleModel(legacy_rule_id=rule.legacy_rule_id)
                            session.add(model)
                        _apply(model, rule)
            except SQLAlchemyError as e:
                raise StoreError(
                    f"Failed to import legacy rule: {e}", legacy_rule_id=rule.legacy_rule_id
                ) from e
            imported += 1

        logger.info(f"Imported {imported} of {len(rows)} legacy alert rules")
        return imported
