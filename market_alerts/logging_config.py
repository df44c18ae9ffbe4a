"""Structured logging: console output plus JSON files for log shipping."""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from pythonjsonlogger import jsonlogger

from market_alerts.config import settings

# Extra fields that identify the alert an entry is about
ALERT_FIELDS = ("instance_id", "dedupe_key", "rule_id", "point_key", "operator")


class AlertJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that groups alert identifiers under ``alert``."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        log_record['service'] = "market_alerts"

        alert = {key: log_record.pop(key) for key in ALERT_FIELDS if key in log_record}
        if alert:
            log_record['alert'] = alert

        # Engine errors carry their type and identifiers in error_context
        error_context = log_record.get('error_context')
        if isinstance(error_context, dict) and 'error' in error_context:
            log_record['error_type'] = error_context['error']


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the service.

    Args:
        base_dir: Directory holding the logs/ folder; defaults to the working directory
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = AlertJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    # Every record, JSON
    app_handler = logging.FileHandler(logs_dir / "app.log")
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(json_formatter)
    root_logger.addHandler(app_handler)

    # Errors only, including failed scheduled evaluations
    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    return root_logger


def log_slow_operation(
    logger: logging.Logger,
    method: str,
    started_at: float,
    **metadata,
) -> float:
    """
    Warn when an operation took longer than the configured budget.

    Args:
        logger: Logger of the calling module
        method: Operation name used in the message
        started_at: ``time.perf_counter()`` value taken before the operation
        **metadata: Extra fields attached to the JSON record

    Returns:
        Elapsed milliseconds
    """
    duration_ms = (time.perf_counter() - started_at) * 1000
    if duration_ms >= settings.slow_operation_ms:
        logger.warning(
            f"[perf] {method} {duration_ms:.0f}ms",
            extra={"operation": method, "duration_ms": round(duration_ms, 1), **metadata},
        )
    return duration_ms
