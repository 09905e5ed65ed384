"""Which ledger rows an initiative's viewers get to see."""

from __future__ import annotations

from opexhub.models.workflow import FIRST_STAGE, STAGE_APPROVED, STAGE_PENDING, StageTransaction
from opexhub.services import stage_ledger


def is_visible(row: StageTransaction, ledger: list[StageTransaction]) -> bool:
    """Stage 1 is always visible.

    Any later stage is visible once its predecessor is approved, or when the
    row itself is pending or approved.  A row whose predecessor row is
    missing stays hidden.
    """
    if row.stage_number == FIRST_STAGE:
        return True
    previous = next((r for r in ledger if r.stage_number == row.stage_number - 1), None)
    if previous is None:
        return False
    return previous.status == STAGE_APPROVED or row.status in (STAGE_PENDING, STAGE_APPROVED)


def get_visible_ledger(initiative_id: int) -> list[StageTransaction]:
    ledger = stage_ledger.get_ledger(initiative_id)
    return [row for row in ledger if is_visible(row, ledger)]
