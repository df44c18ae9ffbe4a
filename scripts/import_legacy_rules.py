#!/usr/bin/env python3
"""
Legacy alert rule import script.

Reads an export of the legacy mapping-rule table (a JSON array) and upserts
the alert rules it contains into market_alert_rules.

Each row must have:
- id: Legacy row id, used as legacy_rule_id so re-running updates in place
- targetValue: JSON string with the rule definition (type, threshold, days,
  direction, severity, optional name)
Optional fields:
- description / pattern: Used as the rule name when the payload has none
- priority: int (default: 0)
- isActive: bool (default: true)

Rows whose targetValue cannot be parsed, or that describe an invalid rule,
are skipped with a warning.
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from market_alerts.db.session import AsyncSessionLocal
from market_alerts.detect.rule_store import RuleStore
from market_alerts.errors import AlertEngineError
from market_alerts.logging_config import setup_logging


def load_rows(path: Path) -> list[dict]:
    """Load legacy rows from a JSON export."""
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError("Export must be a JSON array of rule rows")
    return rows


async def import_rules(path: Path):
    """Import legacy rules from an export file."""
    try:
        rows = load_rows(path)
    except (OSError, ValueError) as e:
        print(f"Error: Could not read {path}: {e}")
        sys.exit(1)

    store = RuleStore(AsyncSessionLocal)
    try:
        imported = await store.import_legacy_rules(rows)
    except AlertEngineError as e:
        print(f"Error: Import failed: {e.message}")
        print("Make sure the database is running and accessible.")
        sys.exit(1)

    print(f"Imported {imported} of {len(rows)} legacy rules ({len(rows) - imported} skipped).")


async def list_rules():
    """List stored rules."""
    store = RuleStore(AsyncSessionLocal)
    rules = await store.list_rules()
    if not rules:
        print("No alert rules stored.")
        return
    for rule in rules:
        status = "active" if rule.is_active else "inactive"
        source = f" (legacy {rule.legacy_rule_id})" if rule.legacy_rule_id else ""
        print(f"[{rule.priority:>3}] {rule.name}: {rule.rule_type.value} {status}{source}")


if __name__ == "__main__":
    setup_logging(Path(__file__).parent.parent)

    if len(sys.argv) > 1 and sys.argv[1] == "--list":
        asyncio.run(list_rules())
    elif len(sys.argv) > 1 and sys.argv[1] != "--help":
        asyncio.run(import_rules(Path(sys.argv[1])))
    else:
        print("Usage: python import_legacy_rules.py [EXPORT.json | --list]")
        print("")
        print("Options:")
        print("  EXPORT.json  Import rules from a legacy mapping-rule export")
        print("  --list       List all stored alert rules")
