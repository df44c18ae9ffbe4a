"""Alert lifecycle states, audit actions and the transition table."""

from enum import Enum


class AlertStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    CLOSED = "CLOSED"


class AlertAction(str, Enum):
    """Audit log actions."""

    CREATE = "CREATE"
    UPDATE_HIT = "UPDATE_HIT"  # Repeat hit refreshed an existing instance
    ACK = "ACK"
    CLOSE = "CLOSE"
    REOPEN = "REOPEN"
    AUTO_CLOSE = "AUTO_CLOSE"  # Closed by evaluation because the hit cleared


# Statuses in which an instance still owns its dedupe key
ACTIVE_STATUSES = (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED)

ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.OPEN: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.CLOSED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.OPEN, AlertStatus.CLOSED}),
    AlertStatus.CLOSED: frozenset({AlertStatus.OPEN}),
}


def is_valid_transition(from_status: AlertStatus, to_status: AlertStatus) -> bool:
    """Same-state is always allowed; everything else follows the table."""
    if from_status == to_status:
        return True
    return to_status in ALLOWED_TRANSITIONS[from_status]


def resolve_action(from_status: AlertStatus, to_status: AlertStatus) -> AlertAction:
    """Audit action recorded for a manual change from one status to another."""
    if from_status == AlertStatus.OPEN and to_status == AlertStatus.ACKNOWLEDGED:
        return AlertAction.ACK
    if to_status == AlertStatus.CLOSED:
        return AlertAction.CLOSE
    if to_status == AlertStatus.OPEN and from_status != AlertStatus.OPEN:
        return AlertAction.REOPEN
    return AlertAction.UPDATE_HIT
