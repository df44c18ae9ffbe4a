"""Price alert rule definitions."""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from market_alerts.errors import ValidationError


class RuleType(str, Enum):
    """Types of price alert rules."""

    DAY_CHANGE_ABS = "DAY_CHANGE_ABS"  # |day change| >= threshold
    DAY_CHANGE_PCT = "DAY_CHANGE_PCT"  # |day change| / price * 100 >= threshold
    DEVIATION_FROM_MEAN_PCT = "DEVIATION_FROM_MEAN_PCT"  # distance from cross-point mean, in %
    CONTINUOUS_DAYS = "CONTINUOUS_DAYS"  # monotonic run over the last N samples


THRESHOLD_RULE_TYPES = frozenset(
    {RuleType.DAY_CHANGE_ABS, RuleType.DAY_CHANGE_PCT, RuleType.DEVIATION_FROM_MEAN_PCT}
)


class RuleDirection(str, Enum):
    """Direction a CONTINUOUS_DAYS run must move in."""

    UP = "UP"
    DOWN = "DOWN"
    BOTH = "BOTH"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


def parse_enum(enum_cls, value: Any, field_name: str):
    """Coerce a raw value into ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Allowed values: {allowed}",
            field=field_name,
            value=value,
        ) from None


def _to_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(
            f"{field_name} must be a number", field=field_name, value=value
        ) from None


def _to_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field_name} must be an integer", field=field_name, value=value
        ) from None


@dataclass
class AlertRule:
    """A validated alert rule."""

    id: Optional[str] = None
    name: str = ""
    rule_type: RuleType = RuleType.DAY_CHANGE_ABS
    threshold: Optional[Decimal] = None  # Meaningful for threshold rule types only
    days: Optional[int] = None  # Meaningful for CONTINUOUS_DAYS only
    direction: RuleDirection = RuleDirection.BOTH
    severity: Severity = Severity.MEDIUM
    priority: int = 0  # Higher priority = evaluated and listed first
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    legacy_rule_id: Optional[str] = field(default=None, repr=False)

    def validate(self) -> "AlertRule":
        """
        Check the threshold/days combination for the rule type.

        Returns:
            A copy with the field that does not apply to the type cleared

        Raises:
            ValidationError: If the rule definition is malformed
        """
        name = (self.name or "").strip()
        if not name:
            raise ValidationError("Rule name must not be empty", field="name")

        if self.rule_type in THRESHOLD_RULE_TYPES:
            if self.threshold is None or self.threshold <= 0:
                raise ValidationError(
                    f"{self.rule_type.value} rules require a positive threshold",
                    field="threshold",
                    value=self.threshold,
                )
            return replace(self, name=name, days=None)

        if self.days is None or self.days < 2:
            raise ValidationError(
                "CONTINUOUS_DAYS rules require days >= 2",
                field="days",
                value=self.days,
            )
        return replace(self, name=name, threshold=None)

    def to_dict(self) -> dict:
        """Convert rule to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "rule_type": self.rule_type.value,
            "threshold": float(self.threshold) if self.threshold is not None else None,
            "days": self.days,
            "direction": self.direction.value,
            "severity": self.severity.value,
            "priority": self.priority,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlertRule":
        """Create and validate a rule from a plain dictionary."""
        rule_type = data.get("rule_type") or data.get("type")
        if not rule_type:
            raise ValidationError("Rule type must not be empty", field="rule_type")
        rule = cls(
            id=data.get("id"),
            name=data.get("name") or "",
            rule_type=parse_enum(RuleType, rule_type, "rule_type"),
            threshold=_to_decimal(data.get("threshold"), "threshold"),
            days=_to_int(data.get("days"), "days"),
            direction=parse_enum(RuleDirection, data.get("direction") or "BOTH", "direction"),
            severity=parse_enum(Severity, data.get("severity") or "MEDIUM", "severity"),
            priority=_to_int(data.get("priority"), "priority") or 0,
            is_active=bool(data.get("is_active", True)),
        )
        return rule.validate()

    @classmethod
    def from_model(cls, model) -> "AlertRule":
        """Build a rule from its database row (already validated on write)."""
        return cls(
            id=model.id,
            name=model.name,
            rule_type=RuleType(model.rule_type),
            threshold=model.threshold,
            days=model.days,
            direction=RuleDirection(model.direction or "BOTH"),
            severity=Severity(model.severity),
            priority=model.priority,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
            legacy_rule_id=model.legacy_rule_id,
        )


def order_rules(rules: list[AlertRule]) -> list[AlertRule]:
    """Active rules, highest priority first, newest first within a priority."""
    active = [rule for rule in rules if rule.is_active]
    active.sort(key=lambda rule: rule.created_at or datetime.min, reverse=True)
    active.sort(key=lambda rule: rule.priority, reverse=True)
    return active


def parse_legacy_payload(row: dict) -> Optional[AlertRule]:
    """
    Convert a legacy mapping-rule row into a validated rule.

    Legacy rows keep the rule definition as a JSON string in ``targetValue``.
    Rows whose payload cannot be parsed or has no type are skipped.

    Args:
        row: Legacy row with ``id``, ``pattern``, ``description``,
             ``targetValue``, ``priority`` and ``isActive`` keys

    Returns:
        The converted rule, or None when the payload is unusable
    """
    try:
        payload = json.loads(row.get("targetValue") or "")
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict) or not payload.get("type"):
        return None

    rule = AlertRule.from_dict(
        {
            "name": payload.get("name") or row.get("description") or row.get("pattern"),
            "type": payload.get("type"),
            "threshold": payload.get("threshold"),
            "days": payload.get("days"),
            "direction": payload.get("direction") or "BOTH",
            "severity": payload.get("severity") or "MEDIUM",
            "priority": row.get("priority", 0),
            "is_active": row.get("isActive", True),
        }
    )
    return replace(rule, legacy_rule_id=str(row["id"]))
