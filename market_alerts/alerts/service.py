"""Alert evaluation, listing and status management."""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.alerts.queries import alert_conditions, sort_alerts
from market_alerts.alerts.reconciler import AlertReconciler
from market_alerts.alerts.transitions import StatusTransitionGate
from market_alerts.config import settings
from market_alerts.db.models import AlertInstance, AlertStatusLog
from market_alerts.detect.evaluator import evaluate_rules
from market_alerts.detect.rule_store import RuleStore
from market_alerts.errors import AlertEngineError, NotFoundError, StoreError
from market_alerts.filters import AlertFilter, ObservationScope
from market_alerts.logging_config import log_slow_operation
from market_alerts.metrics import (
    record_evaluation,
    record_hit,
    record_instance_changes,
    record_transition,
)
from market_alerts.observations.store import ObservationStore, group_observations

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    evaluated_at: datetime
    total: int
    created: int
    updated: int
    closed: int


@dataclass
class AlertListing:
    total: int
    items: list[AlertInstance] = field(default_factory=list)


class AlertService:
    """Entry point for everything alert related."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        observation_store: Optional[ObservationStore] = None,
        rule_store: Optional[RuleStore] = None,
    ):
        self.session_factory = session_factory
        self.observations = observation_store or ObservationStore(session_factory)
        self.rules = rule_store or RuleStore(session_factory)
        self.reconciler = AlertReconciler(session_factory)
        self.gate = StatusTransitionGate(session_factory)

    async def evaluate(
        self,
        scope: ObservationScope,
        operator: Optional[str] = None,
        today: Optional[date] = None,
        trigger: str = "api",
    ) -> EvaluationResult:
        """
        Evaluate active rules over the scope and reconcile alert instances.

        Running twice over unchanged data creates and closes nothing the
        second time.

        Args:
            scope: Observations to evaluate; also bounds the auto-close sweep
            operator: Operator recorded on CREATE / UPDATE_HIT rows
            today: Reference day for scopes without an end date
            trigger: Metrics label for what started the run

        Returns:
            EvaluationResult with hit and mutation counts

        Raises:
            StoreError: If loading data or persisting alerts fails
        """
        started_at = time.perf_counter()
        operator = operator or settings.system_operator

        try:
            rules = await self.rules.list_rules(only_active=True)
            observations = await self.observations.list_observations(scope, today)
            hits = evaluate_rules(rules, group_observations(observations))
            for hit in hits:
                record_hit(hit.rule_type.value, hit.severity.value)

            result = await self.reconciler.reconcile(
                hits, AlertFilter.from_scope(scope), operator, today
            )
        except AlertEngineError:
            record_evaluation(trigger, False, time.perf_counter() - started_at)
            raise

        record_evaluation(trigger, True, time.perf_counter() - started_at)
        record_instance_changes(result.created, result.updated, result.closed)
        log_slow_operation(
            logger,
            "evaluate",
            started_at,
            commodity=scope.commodity,
            hits=len(hits),
        )

        logger.info(
            f"Evaluation ({trigger}) by {operator}: {len(rules)} rules, "
            f"{len(observations)} observations, {len(hits)} hits"
        )
        return EvaluationResult(
            evaluated_at=datetime.utcnow(),
            total=len(hits),
            created=result.created,
            updated=result.updated,
            closed=result.closed,
        )

    async def list_alerts(
        self,
        alert_filter: AlertFilter,
        refresh: bool = False,
        operator: Optional[str] = None,
        today: Optional[date] = None,
    ) -> AlertListing:
        """
        List alert instances, most severe first.

        Args:
            alert_filter: Filter, including severity/status and the limit
            refresh: Run an evaluation over the filter's scope first
            operator: Operator for the refresh evaluation
            today: Reference day for filters without an end date

        Returns:
            AlertListing with the count of matches and at most ``limit`` items
        """
        started_at = time.perf_counter()
        if refresh:
            await self.evaluate(alert_filter, operator, today, trigger="refresh")

        start, end = alert_filter.resolve_window(today)
        conditions = alert_conditions(alert_filter, start, end)
        query = select(AlertInstance)
        if conditions:
            query = query.where(and_(*conditions))

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                instances = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list alerts: {e}") from e

        items = sort_alerts(instances)[: alert_filter.limit]
        log_slow_operation(logger, "list_alerts", started_at, rows=len(instances))
        return AlertListing(total=len(instances), items=items)

    async def list_status_logs(self, instance_id: str) -> list[AlertStatusLog]:
        """
        Audit history of one instance, newest first.

        Raises:
            NotFoundError: Unknown instance id
        """
        try:
            async with self.session_factory() as session:
                instance = await session.get(AlertInstance, instance_id)
                if instance is None:
                    raise NotFoundError("Alert instance not found", instance_id=instance_id)
                result = await session.execute(
                    select(AlertStatusLog)
                    .where(AlertStatusLog.instance_id == instance_id)
                    .order_by(AlertStatusLog.created_at.desc(), AlertStatusLog.id.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to load alert logs: {e}", instance_id=instance_id
            ) from e

    async def update_status(
        self,
        instance_id: str,
        to_status: str,
        note: Optional[str] = None,
        reason: Optional[str] = None,
        operator: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> AlertInstance:
        """Apply a manual status change; see ``StatusTransitionGate.apply``."""
        try:
            instance = await self.gate.apply(
                instance_id,
                to_status,
                note=note,
                reason=reason,
                operator=operator or settings.system_operator,
                expected_status=expected_status,
            )
        except AlertEngineError:
            record_transition(str(to_status).upper(), False)
            raise
        record_transition(instance.status, True)
        return instance
