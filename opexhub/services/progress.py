"""
Progress ratios for an initiative.

``percent_complete`` divides by the rows materialised so far, so the
denominator grows as stages are created.  ``plan_percent_complete`` divides
by the fixed eleven-stage plan.  Both floor to an int.
"""

from __future__ import annotations

from opexhub.core.exceptions import NotFoundError
from opexhub.models import db
from opexhub.models.initiative import Initiative
from opexhub.models.workflow import LAST_STAGE, STAGE_APPROVED
from opexhub.services import stage_ledger


def _counts(initiative_id: int) -> tuple[int, int]:
    ledger = stage_ledger.get_ledger(initiative_id)
    approved = sum(1 for row in ledger if row.status == STAGE_APPROVED)
    return approved, len(ledger)


def percent_complete(initiative_id: int) -> int:
    approved, total = _counts(initiative_id)
    if total == 0:
        return 0
    return approved * 100 // total


def plan_percent_complete(initiative_id: int, planned_stages: int = LAST_STAGE) -> int:
    approved, _ = _counts(initiative_id)
    return approved * 100 // planned_stages


def progress_summary(initiative_id: int) -> dict:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    approved, total = _counts(initiative_id)
    return {
        "initiative_id": initiative_id,
        "status": initiative.status,
        "current_stage": initiative.current_stage,
        "approved_stages": approved,
        "materialised_stages": total,
        "percent_complete": approved * 100 // total if total else 0,
        "plan_percent_complete": approved * 100 // LAST_STAGE,
    }
