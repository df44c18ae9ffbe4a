"""Prometheus metrics for the market alerts service."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("market_alerts", "Market alerts application info")
app_info.info({"version": "0.1.0", "name": "market-alerts"})

# Evaluation metrics
alert_evaluations_total = Counter(
    "alert_evaluations_total",
    "Total number of alert evaluation runs",
    ["trigger", "status"],
)

alert_evaluation_duration_seconds = Histogram(
    "alert_evaluation_duration_seconds",
    "Time spent evaluating rules and reconciling alerts",
    ["trigger"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

alert_hits_total = Counter(
    "alert_hits_total",
    "Total number of rule hits produced by evaluation",
    ["rule_type", "severity"],
)

# Instance metrics
alert_instance_changes_total = Counter(
    "alert_instance_changes_total",
    "Total number of alert instance mutations",
    ["action"],
)

alert_transitions_total = Counter(
    "alert_transitions_total",
    "Total number of manual status change attempts",
    ["to_status", "status"],
)

# Continuity metrics
continuity_requests_total = Counter(
    "continuity_requests_total",
    "Total number of continuity report requests",
    ["report"],
)

continuity_overall_score = Gauge(
    "continuity_overall_score",
    "Overall continuity score of the last health report",
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_evaluation(trigger: str, success: bool, duration: float):
    """Record an evaluation run."""
    status = "success" if success else "error"
    alert_evaluations_total.labels(trigger=trigger, status=status).inc()
    alert_evaluation_duration_seconds.labels(trigger=trigger).observe(duration)


def record_hit(rule_type: str, severity: str):
    """Record a rule hit."""
    alert_hits_total.labels(rule_type=rule_type, severity=severity).inc()


def record_instance_changes(created: int, updated: int, closed: int):
    """Record instance mutations from a reconcile run."""
    if created:
        alert_instance_changes_total.labels(action="CREATE").inc(created)
    if updated:
        alert_instance_changes_total.labels(action="UPDATE_HIT").inc(updated)
    if closed:
        alert_instance_changes_total.labels(action="AUTO_CLOSE").inc(closed)


def record_transition(to_status: str, success: bool):
    """Record a manual status change attempt."""
    status = "success" if success else "rejected"
    alert_transitions_total.labels(to_status=to_status, status=status).inc()


def record_continuity_request(report: str, overall_score: float | None = None):
    """Record a continuity report request."""
    continuity_requests_total.labels(report=report).inc()
    if overall_score is not None:
        continuity_overall_score.set(overall_score)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
