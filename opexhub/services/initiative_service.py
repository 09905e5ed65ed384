"""
Initiative registration and stage-access checks.

Registration inserts the initiative and seeds its ledger in one transaction;
if routing for the site is incomplete nothing is persisted.

Initiative numbers follow ``SITE/YY/CC/DD/NNN``:
    YY   two-digit registration year
    CC   discipline category code (OP, EG, EV, SF, QA, OT)
    DD   running number for (site, year, category)
    NNN  running number for (site, year)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select

from opexhub.core.exceptions import NotFoundError, ValidationError
from opexhub.models import db
from opexhub.models.initiative import DISCIPLINE_CATEGORY_CODES, INITIATIVE_PRIORITIES, Initiative
from opexhub.models.workflow import (
    SAVINGS_MONITORING_STAGE,
    STAGE_APPROVED,
    TIMELINE_TRACKER_STAGE,
)
from opexhub.services import stage_ledger
from opexhub.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

SAVINGS_MONITORING_ROLE = "STLD"
ACCESS_CHECKED_STAGES = frozenset({TIMELINE_TRACKER_STAGE, SAVINGS_MONITORING_STAGE})


def category_code(discipline: str) -> str:
    return DISCIPLINE_CATEGORY_CODES.get((discipline or "").strip().lower(), "OT")


def generate_initiative_number(site: str, discipline: str, when: datetime | None = None) -> str:
    when = when or datetime.now(timezone.utc)
    yy = f"{when.year % 100:02d}"
    cc = category_code(discipline)
    site_prefix = f"{site}/{yy}/"

    site_count = db.session.execute(
        select(func.count(Initiative.id)).where(Initiative.initiative_number.like(f"{site_prefix}%"))
    ).scalar_one()
    category_count = db.session.execute(
        select(func.count(Initiative.id)).where(Initiative.initiative_number.like(f"{site_prefix}{cc}/%"))
    ).scalar_one()
    return f"{site_prefix}{cc}/{category_count + 1:02d}/{site_count + 1:03d}"


def _parse_savings(value):
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(
            "expected_savings must be a number", details={"expected_savings": str(value)},
        ) from exc


def register_initiative(data: dict, creator_name: str, engine, creator_id: int | None = None) -> Initiative:
    """Create an initiative and seed stages 1 and 2.

    Args:
        data: title, site, discipline required; description, priority,
            expected_savings optional.
        creator_name: Recorded as the stage-1 actor.
        engine: StageProgressionEngine used for seeding.

    Raises:
        ValidationError: missing / invalid fields.
        MisconfiguredRoutingError: site routing lacks stage 1 or 2.
    """
    missing = {f: "required" for f in ("title", "site", "discipline") if not str(data.get(f) or "").strip()}
    if not (creator_name or "").strip():
        missing["initiator_name"] = "required"
    if missing:
        raise ValidationError("Missing required fields", details=missing)

    priority = (data.get("priority") or "medium").lower()
    if priority not in INITIATIVE_PRIORITIES:
        raise ValidationError(
            f"Invalid priority '{priority}'", details={"priority": sorted(INITIATIVE_PRIORITIES)},
        )

    site = data["site"].strip().upper()
    initiative = Initiative(
        initiative_number=generate_initiative_number(site, data["discipline"]),
        title=data["title"].strip(),
        description=data.get("description") or "",
        site=site,
        discipline=data["discipline"].strip(),
        priority=priority,
        expected_savings=_parse_savings(data.get("expected_savings")),
        initiator_name=creator_name.strip(),
        created_by_id=creator_id,
    )
    db.session.add(initiative)
    db.session.flush()

    engine.seed(initiative, creator_name.strip())
    logger.info("Registered initiative %s (%s)", initiative.initiative_number, initiative.id)
    return initiative


def get_initiative(initiative_id: int) -> Initiative:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    return initiative


# ── Stage access ───────────────────────────────────────────────────────────────


def _same_email(a, b):
    return bool(a and b) and a.strip().lower() == b.strip().lower()


def _may_open(row, initiative, email, role=None):
    if row.stage_number == TIMELINE_TRACKER_STAGE:
        lead = initiative.assigned_lead
        if lead is not None:
            return _same_email(lead.email, email)
        return _same_email(row.pending_with, email)
    if row.stage_number == SAVINGS_MONITORING_STAGE:
        return role == SAVINGS_MONITORING_ROLE or _same_email(row.pending_with, email)
    return False


def initiatives_with_approved_stage(stage_number: int, email: str, site: str | None = None) -> list[Initiative]:
    """Initiatives whose stage 6 or 9 is approved and that ``email`` may open."""
    if stage_number not in ACCESS_CHECKED_STAGES:
        raise ValidationError(
            f"Stage {stage_number} has no approved-stage list",
            details={"stage_number": sorted(ACCESS_CHECKED_STAGES)},
        )
    user = UserDirectory().find_by_email(email)
    role = user.role if user is not None and user.is_active else None
    result = []
    for row in stage_ledger.get_approved_rows(stage_number, site):
        if role is not None and user.site != row.site:
            continue
        if _may_open(row, row.initiative, email, role):
            result.append(row.initiative)
    return result


def has_timeline_tracker_access(initiative_id: int, email: str) -> bool:
    initiative = get_initiative(initiative_id)
    row = stage_ledger.get_stage_row(initiative_id, TIMELINE_TRACKER_STAGE)
    if row is None or row.status != STAGE_APPROVED:
        return False
    return _may_open(row, initiative, email)


def has_savings_monitoring_access(initiative_id: int, email: str, role: str | None = None) -> bool:
    get_initiative(initiative_id)
    row = stage_ledger.get_stage_row(initiative_id, SAVINGS_MONITORING_STAGE)
    if row is None or row.status != STAGE_APPROVED:
        return False
    return _may_open(row, None, email, role)


def access_summary(initiative_id: int, email: str, role: str | None = None) -> dict:
    return {
        "initiative_id": initiative_id,
        "email": email,
        "role": role,
        "timeline_tracker": has_timeline_tracker_access(initiative_id, email),
        "savings_monitoring": has_savings_monitoring_access(initiative_id, email, role),
    }
