"""Quality tagging for individual price observations."""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional

from market_alerts.config import settings


class QualityTag(str, Enum):
    """Provenance/timeliness label of a single observation."""

    RAW = "RAW"
    CORRECTED = "CORRECTED"  # Note mentions a correction
    IMPUTED = "IMPUTED"  # Note mentions back-filling or estimation
    LATE = "LATE"  # Submitted well after its effective date


CORRECTED_NOTE_KEYWORDS = ("修正", "更正", "校正", "修订")
IMPUTED_NOTE_KEYWORDS = ("补录", "估算", "插值", "补齐", "回填")


def submission_lag(effective_date: date, created_at: datetime) -> timedelta:
    """Time between the start of the effective day and the submission."""
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
    return created_at - datetime.combine(effective_date, time.min)


def classify_quality(
    note: Optional[str],
    effective_date: date,
    created_at: datetime,
    late_hours: Optional[float] = None,
) -> QualityTag:
    """
    Label an observation from its note text and submission lag.

    Keyword matches win over lateness, and correction keywords win over
    imputation keywords.

    Args:
        note: Free-text note attached to the observation
        effective_date: Day the price applies to
        created_at: Submission timestamp
        late_hours: Override for the lateness threshold in hours

    Returns:
        QualityTag for the observation
    """
    text = (note or "").strip()
    if any(keyword in text for keyword in CORRECTED_NOTE_KEYWORDS):
        return QualityTag.CORRECTED
    if any(keyword in text for keyword in IMPUTED_NOTE_KEYWORDS):
        return QualityTag.IMPUTED

    threshold = settings.late_hours_threshold if late_hours is None else late_hours
    if submission_lag(effective_date, created_at) > timedelta(hours=threshold):
        return QualityTag.LATE
    return QualityTag.RAW
