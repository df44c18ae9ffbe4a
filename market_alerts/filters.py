"""Query filters shared by the observation, alert and continuity surfaces.

Raw query parameters are parsed once into these closed value types; the
services below never see loosely-typed dictionaries.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from pydantic import ValidationInfo, field_validator, model_validator

from market_alerts.alerts.states import AlertStatus
from market_alerts.config import settings
from market_alerts.detect.rules import Severity
from market_alerts.errors import ValidationError

COMMODITY_CODE_TO_LABEL = {
    "CORN": "玉米",
    "WHEAT": "小麦",
    "SOYBEAN": "大豆",
    "RICE": "稻谷",
    "SORGHUM": "高粱",
    "BARLEY": "大麦",
}

LEGACY_SUB_TYPES = {
    "STATION_ORIGIN": "STATION",
    "STATION_DEST": "STATION",
}


class PointType(str, Enum):
    ENTERPRISE = "ENTERPRISE"
    PORT = "PORT"
    STATION = "STATION"
    REGION = "REGION"
    MARKET = "MARKET"


class ReviewScope(str, Enum):
    """Which review states count as usable data."""

    APPROVED_AND_PENDING = "APPROVED_AND_PENDING"
    APPROVED_ONLY = "APPROVED_ONLY"
    ALL = "ALL"

    def statuses(self) -> Optional[list[str]]:
        """Review statuses to match, or None for no restriction."""
        if self is ReviewScope.APPROVED_ONLY:
            return ["APPROVED", "AUTO_APPROVED"]
        if self is ReviewScope.ALL:
            return None
        return ["APPROVED", "AUTO_APPROVED", "PENDING"]


class SourceScope(str, Enum):
    """Which input methods count as usable data."""

    ALL = "ALL"
    AI_ONLY = "AI_ONLY"
    MANUAL_ONLY = "MANUAL_ONLY"

    def input_methods(self) -> Optional[list[str]]:
        if self is SourceScope.AI_ONLY:
            return ["AI_EXTRACTED"]
        if self is SourceScope.MANUAL_ONLY:
            return ["MANUAL_ENTRY", "BULK_IMPORT"]
        return None


def parse_csv(value: Any) -> list[str]:
    """Split a comma separated string (or list of them) into clean items."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple, set)) else [value]
    parsed: list[str] = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, Enum):
            item = item.value
        for part in str(item).split(","):
            part = part.strip()
            if part and part not in parsed:
                parsed.append(part)
    return parsed


def commodity_candidates(commodity: Optional[str]) -> list[str]:
    """
    Expand a commodity into every spelling stored for it.

    Observations may carry either the code (``CORN``) or the display label
    (``玉米``), so a filter on one must match both.
    """
    value = (commodity or "").strip()
    if not value:
        return []

    candidates = [value]
    upper = value.upper()
    if upper in COMMODITY_CODE_TO_LABEL:
        candidates.extend([upper, COMMODITY_CODE_TO_LABEL[upper]])
    for code, label in COMMODITY_CODE_TO_LABEL.items():
        if label == value:
            candidates.extend([code, label])
    return list(dict.fromkeys(candidates))


class ObservationScope(BaseModel):
    """Scope of observations an evaluation or health report looks at."""

    commodity: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    days: int = Field(default_factory=lambda: settings.default_window_days, ge=1)
    region_code: Optional[str] = None
    point_ids: list[str] = Field(default_factory=list)
    point_types: list[PointType] = Field(default_factory=list)
    sub_types: list[str] = Field(default_factory=list)
    review_scope: ReviewScope = ReviewScope.APPROVED_AND_PENDING
    source_scope: SourceScope = SourceScope.ALL

    @field_validator("point_ids", mode="before")
    @classmethod
    def split_point_ids(cls, v: Any) -> list[str]:
        return parse_csv(v)

    @field_validator("point_types", mode="before")
    @classmethod
    def split_point_types(cls, v: Any) -> list[str]:
        return [item.upper() for item in parse_csv(v)]

    @field_validator("sub_types", mode="before")
    @classmethod
    def normalize_sub_types(cls, v: Any) -> list[str]:
        normalized = []
        for item in parse_csv(v):
            value = LEGACY_SUB_TYPES.get(item.upper(), item.upper())
            if value not in normalized:
                normalized.append(value)
        return normalized

    @field_validator("review_scope", "source_scope", mode="before")
    @classmethod
    def upper_scope(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("commodity", "region_code", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_range(self) -> "ObservationScope":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def resolve_window(self, today: Optional[date] = None) -> tuple[date, date]:
        """
        Resolve the inclusive date window of this scope.

        Explicit dates win; a missing start is ``days`` back from the end, and
        a missing end is today.
        """
        end = self.end_date or today or date.today()
        start = self.start_date or end - timedelta(days=self.days - 1)
        return start, end

    def commodity_candidates(self) -> list[str]:
        return commodity_candidates(self.commodity)


class AlertFilter(ObservationScope):
    """Filter for listing alert instances (and for the stale-close sweep)."""

    severity: Optional[Severity] = None
    status: Optional[AlertStatus] = None
    limit: int = Field(default_factory=lambda: settings.default_alert_limit, ge=1)

    @field_validator("severity", "status", mode="before")
    @classmethod
    def upper_enum(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v.strip().upper() if isinstance(v, str) else v

    @classmethod
    def from_scope(cls, scope: ObservationScope) -> "AlertFilter":
        """Alert filter covering exactly the scope, without severity or status."""
        return cls(**scope.model_dump(mode="json", exclude={"severity", "status", "limit"}))


def build_filter(model: type[BaseModel], **params: Any):
    """
    Parse raw query parameters into a filter model.

    Raises:
        ValidationError: If any parameter is malformed or an enum value is unknown
    """
    cleaned = {key: value for key, value in params.items() if value is not None}
    try:
        return model(**cleaned)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError("Invalid filter parameters", errors=errors) from exc
