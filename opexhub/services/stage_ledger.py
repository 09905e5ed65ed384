"""
Stage ledger - every read and write of ``stage_transactions``.

Writes never commit; the caller (the progression engine) owns the
transaction.  Status changes go through compare-and-set UPDATEs guarded by
``status`` and ``version`` so that two concurrent actions on the same row
produce exactly one winner.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update

from opexhub.core.exceptions import NotFoundError, NotPendingError
from opexhub.models import db
from opexhub.models.initiative import Initiative
from opexhub.models.workflow import (
    CLOSURE_READY_STAGE,
    STAGE_APPROVED,
    STAGE_NOT_STARTED,
    STAGE_PENDING,
    StageTransaction,
)

logger = logging.getLogger(__name__)


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_ledger(initiative_id: int) -> list[StageTransaction]:
    """All rows of an initiative ordered by stage number."""
    stmt = (
        select(StageTransaction)
        .where(StageTransaction.initiative_id == initiative_id)
        .order_by(StageTransaction.stage_number)
    )
    return list(db.session.execute(stmt).scalars().all())


def count_rows(initiative_id: int) -> int:
    return db.session.execute(
        select(func.count(StageTransaction.id)).where(StageTransaction.initiative_id == initiative_id)
    ).scalar_one()


def get_row(transaction_id: int, *, for_update: bool = False) -> StageTransaction:
    """Load a ledger row or raise NotFoundError.

    With ``for_update`` the row is locked (``SELECT … FOR UPDATE``) on
    dialects that support it and re-populated from the database.
    """
    stmt = select(StageTransaction).where(StageTransaction.id == transaction_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    row = db.session.execute(stmt).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource="StageTransaction", resource_id=transaction_id)
    return row


def get_stage_row(initiative_id: int, stage_number: int) -> StageTransaction | None:
    return db.session.execute(
        select(StageTransaction).where(
            StageTransaction.initiative_id == initiative_id,
            StageTransaction.stage_number == stage_number,
        )
    ).scalar_one_or_none()


def get_pending(role: str, site: str | None = None) -> list[StageTransaction]:
    """Pending rows queued on the role code itself.

    Rows addressed to a named user are not listed even when that user holds
    ``role``.
    """
    stmt = select(StageTransaction).where(
        StageTransaction.status == STAGE_PENDING,
        StageTransaction.pending_with == role,
    )
    if site:
        stmt = stmt.where(StageTransaction.site == site)
    stmt = stmt.order_by(StageTransaction.created_at, StageTransaction.id)
    return list(db.session.execute(stmt).scalars().all())


def get_current_pending(initiative_id: int) -> StageTransaction | None:
    """Lowest-numbered pending row of an initiative, or None."""
    return db.session.execute(
        select(StageTransaction)
        .where(
            StageTransaction.initiative_id == initiative_id,
            StageTransaction.status == STAGE_PENDING,
        )
        .order_by(StageTransaction.stage_number)
        .limit(1)
    ).scalar_one_or_none()


def get_ready_for_closure() -> list[Initiative]:
    """Initiatives whose savings validation stage is approved."""
    stmt = (
        select(Initiative)
        .join(StageTransaction, StageTransaction.initiative_id == Initiative.id)
        .where(
            StageTransaction.stage_number == CLOSURE_READY_STAGE,
            StageTransaction.status == STAGE_APPROVED,
        )
        .order_by(Initiative.id)
    )
    return list(db.session.execute(stmt).scalars().all())


def get_approved_rows(stage_number: int, site: str | None = None) -> list[StageTransaction]:
    stmt = select(StageTransaction).where(
        StageTransaction.stage_number == stage_number,
        StageTransaction.status == STAGE_APPROVED,
    )
    if site:
        stmt = stmt.where(StageTransaction.site == site)
    return list(db.session.execute(stmt.order_by(StageTransaction.initiative_id)).scalars().all())


# ── Writes (flush only) ────────────────────────────────────────────────────────


def insert_row(initiative: Initiative, stage_number: int, stage_name: str, *, status: str,
               required_role=None, pending_with=None, pending_with_kind=None,
               assigned_user_id=None, action_by=None, action_at=None, comment=None) -> StageTransaction:
    """Add a row and flush.

    The ``(initiative_id, stage_number)`` unique constraint surfaces as an
    IntegrityError on flush when the row already exists.
    """
    row = StageTransaction(
        initiative_id=initiative.id,
        stage_number=stage_number,
        stage_name=stage_name,
        site=initiative.site,
        status=status,
        required_role=required_role,
        pending_with=pending_with,
        pending_with_kind=pending_with_kind,
        assigned_user_id=assigned_user_id,
        action_by=action_by,
        action_at=action_at,
        comment=comment,
        version=1,
    )
    db.session.add(row)
    db.session.flush()
    return row


def _compare_and_set(row: StageTransaction, expected_status: str, values: dict) -> StageTransaction:
    result = db.session.execute(
        update(StageTransaction)
        .where(
            StageTransaction.id == row.id,
            StageTransaction.status == expected_status,
            StageTransaction.version == row.version,
        )
        .values(version=StageTransaction.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "Lost compare-and-set on stage transaction %s (expected %s, version %s)",
            row.id, expected_status, row.version,
        )
        raise NotPendingError(row.id)
    db.session.refresh(row)
    return row


def claim_pending(row: StageTransaction, new_status: str, **values) -> StageTransaction:
    """Move a pending row to ``new_status`` if nobody else has since.

    Raises:
        NotPendingError: the row changed after it was read.
    """
    return _compare_and_set(row, STAGE_PENDING, {"status": new_status, **values})


def activate_row(row: StageTransaction, pending_with: str, pending_with_kind: str) -> StageTransaction:
    """not_started → pending, addressed to ``pending_with``."""
    return _compare_and_set(row, STAGE_NOT_STARTED, {
        "status": STAGE_PENDING,
        "pending_with": pending_with,
        "pending_with_kind": pending_with_kind,
    })
