"""Rule management routes."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from market_alerts.api.deps import get_rule_store, http_error
from market_alerts.detect.rule_store import RuleStore
from market_alerts.errors import AlertEngineError

router = APIRouter(prefix="/api/rules", tags=["rules"])


class RuleCreate(BaseModel):
    name: str
    rule_type: str
    threshold: Optional[float] = None
    days: Optional[int] = None
    direction: str = "BOTH"
    severity: str = "MEDIUM"
    priority: int = 0
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    rule_type: Optional[str] = None
    threshold: Optional[float] = None
    days: Optional[int] = None
    direction: Optional[str] = None
    severity: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    id: str
    name: str
    rule_type: str
    threshold: Optional[float]
    days: Optional[int]
    direction: str
    severity: str
    priority: int
    is_active: bool


class LegacyImportResponse(BaseModel):
    imported: int
    skipped: int


@router.get("", response_model=List[RuleResponse])
async def list_rules(
    only_active: bool = False,
    store: RuleStore = Depends(get_rule_store),
):
    """List rules, highest priority first."""
    try:
        rules = await store.list_rules(only_active=only_active)
    except AlertEngineError as e:
        raise http_error(e) from e
    return [rule.to_dict() for rule in rules]


@router.post("", response_model=RuleResponse, status_code=201)
async def create_rule(rule_data: RuleCreate, store: RuleStore = Depends(get_rule_store)):
    """Create a new rule."""
    try:
        rule = await store.create_rule(rule_data.model_dump())
    except AlertEngineError as e:
        raise http_error(e) from e
    return rule.to_dict()


@router.post("/import-legacy", response_model=LegacyImportResponse)
async def import_legacy_rules(
    rows: List[dict[str, Any]],
    store: RuleStore = Depends(get_rule_store),
):
    """Import rules from legacy mapping-rule rows."""
    try:
        imported = await store.import_legacy_rules(rows)
    except AlertEngineError as e:
        raise http_error(e) from e
    return LegacyImportResponse(imported=imported, skipped=len(rows) - imported)


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str, store: RuleStore = Depends(get_rule_store)):
    """Get a rule by ID."""
    try:
        rule = await store.get_rule(rule_id)
    except AlertEngineError as e:
        raise http_error(e) from e
    return rule.to_dict()


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    rule_data: RuleUpdate,
    store: RuleStore = Depends(get_rule_store),
):
    """Update a rule; the merged definition is validated as a whole."""
    try:
        rule = await store.update_rule(rule_id, rule_data.model_dump(exclude_unset=True))
    except AlertEngineError as e:
        raise http_error(e) from e
    return rule.to_dict()


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, store: RuleStore = Depends(get_rule_store)):
    """Delete a rule that never produced an alert."""
    try:
        await store.delete_rule(rule_id)
    except AlertEngineError as e:
        raise http_error(e) from e
    return Response(status_code=204)
