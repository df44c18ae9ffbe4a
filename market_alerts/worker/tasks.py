"""Background task bodies run by the scheduler."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_alerts.alerts.service import AlertService, EvaluationResult
from market_alerts.config import settings
from market_alerts.db.session import AsyncSessionLocal
from market_alerts.errors import AlertEngineError
from market_alerts.filters import ObservationScope
from market_alerts.metrics import record_scheduler_run

logger = logging.getLogger(__name__)


async def run_scheduled_evaluation(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Optional[EvaluationResult]:
    """
    Evaluate every active rule over the trailing window.

    Failures are logged and counted; the next run starts from scratch.

    Returns:
        EvaluationResult, or None when the run failed
    """
    service = AlertService(session_factory or AsyncSessionLocal)
    scope = ObservationScope(days=settings.evaluation_window_days)

    try:
        result = await service.evaluate(
            scope, operator=settings.system_operator, trigger="scheduler"
        )
    except AlertEngineError as e:
        logger.error(
            f"Scheduled alert evaluation failed: {e.message}",
            extra={"error_context": e.to_dict()},
        )
        record_scheduler_run("alert_evaluation", False)
        return None

    record_scheduler_run("alert_evaluation", True)
    logger.info(
        f"Scheduled evaluation: {result.total} hits, {result.created} created, "
        f"{result.updated} updated, {result.closed} closed"
    )
    return result
