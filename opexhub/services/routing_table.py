"""
Routing table service - static per-site stage routing.

Responsibilities:
    - lookup(site, stage): active RoutingEntry for the statically routed stages
    - resolve_by_role(site, role): deterministic role pool for role-routed stages
    - reconcile(site): report routing rows that disagree with the engine's own
      stage definitions (display metadata vs. executable behaviour)
    - seed_default_routing(): demo routing + users for the NDS and DHJ sites

The engine treats this table as read-only.  Rows for stages 4–11 are never
consulted by the engine; ``reconcile`` exists so that administrators can see
where the configured names / roles drift from what actually executes.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select

from opexhub.core.exceptions import ValidationError
from opexhub.models import db
from opexhub.models.auth import User
from opexhub.models.workflow import RoutingEntry, engine_stage_definition
from opexhub.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


class RoutingTable:
    """Lookup facade over ``routing_entries`` plus the user directory."""

    def __init__(self, directory: UserDirectory | None = None):
        self.directory = directory or UserDirectory()

    def lookup(self, site: str, stage_number: int) -> RoutingEntry | None:
        return db.session.execute(
            select(RoutingEntry).where(
                RoutingEntry.site == site,
                RoutingEntry.stage_number == stage_number,
                RoutingEntry.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def resolve_by_role(self, site: str, role: str) -> list[User]:
        return self.directory.find_by_site_and_role(site, role)

    def entries_for_site(self, site: str) -> list[RoutingEntry]:
        return list(db.session.execute(
            select(RoutingEntry)
            .where(RoutingEntry.site == site)
            .order_by(RoutingEntry.stage_number)
        ).scalars().all())

    def reconcile(self, site: str) -> list[dict]:
        """List routing rows whose name or role contradicts the engine definition.

        Returns:
            One dict per mismatch:
            {"stage_number", "field", "configured", "executed"}
        """
        mismatches = []
        for entry in self.entries_for_site(site):
            definition = engine_stage_definition(entry.stage_number)
            if definition is None:
                continue
            stage_name, role = definition
            if entry.stage_name != stage_name:
                mismatches.append({
                    "stage_number": entry.stage_number,
                    "field": "stage_name",
                    "configured": entry.stage_name,
                    "executed": stage_name,
                })
            if entry.required_role != role:
                mismatches.append({
                    "stage_number": entry.stage_number,
                    "field": "required_role",
                    "configured": entry.required_role,
                    "executed": role,
                })
        if mismatches:
            logger.warning(
                "Routing table for site %s disagrees with engine stage definitions (%d field(s))",
                site, len(mismatches),
            )
        return mismatches


def normalise_email(email: str) -> str:
    """Validate an address syntactically and return its normalised form."""
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid e-mail address: {email!r}", details={"email": str(exc)}) from exc


def add_routing_entry(site, stage_number, stage_name, required_role, default_user_email, is_active=True):
    """Insert a routing row (flush only).  Used by seeding and admin scripts."""
    if not stage_name or not required_role:
        raise ValidationError("stage_name and required_role are required")
    entry = RoutingEntry(
        site=site,
        stage_number=stage_number,
        stage_name=stage_name,
        required_role=required_role,
        default_user_email=normalise_email(default_user_email),
        is_active=is_active,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# ── Demo data ────────────────────────────────────────────────────────────────

_DEFAULT_ROUTING = {
    "NDS": [
        (1, "Register Initiative", "STLD", "manoj.tiwari@godeepak.com"),
        (2, "Evaluation and Approval", "CTSD", "ravi.kumar@godeepak.com"),
        (3, "Initiative assessment and approval", "SH", "ananya.verma@godeepak.com"),
    ],
    "DHJ": [
        (1, "Register Initiative", "STLD", "sunil.kumar@godeepak.com"),
        (2, "Evaluation and Approval", "CTSD", "anil.mishra@godeepak.com"),
        (3, "Initiative assessment and approval", "SH", "rekha.gupta@godeepak.com"),
    ],
}

_DEFAULT_USERS = [
    # full_name, email, site, discipline, role, role_name
    ("Manoj Tiwari", "manoj.tiwari@godeepak.com", "NDS", "Operation", "STLD", "Site TSD Lead"),
    ("Deepika Singh", "deepika.singh@godeepak.com", "NDS", "Engineering & Utility", "STLD", "Site TSD Lead"),
    ("Ananya Verma", "ananya.verma@godeepak.com", "NDS", "Management", "SH", "Site Head"),
    ("Ravi Kumar", "ravi.kumar@godeepak.com", "NDS", "Corporate", "CTSD", "Corporate TSD"),
    ("Kiran Sharma", "kiran.sharma@godeepak.com", "NDS", "Operation", "IL", "Initiative Lead"),
    ("Neha Reddy", "neha.reddy@godeepak.com", "NDS", "Engineering & Utility", "IL", "Initiative Lead"),
    ("Sonia Jain", "sonia.jain@godeepak.com", "NDS", "Finance", "F&A", "Site F&A"),
    ("Sunil Kumar", "sunil.kumar@godeepak.com", "DHJ", "Operation", "STLD", "Site TSD Lead"),
    ("Rekha Gupta", "rekha.gupta@godeepak.com", "DHJ", "Management", "SH", "Site Head"),
    ("Anil Mishra", "anil.mishra@godeepak.com", "DHJ", "Corporate", "CTSD", "Corporate TSD"),
    ("Vivek Rao", "vivek.rao@godeepak.com", "DHJ", "Operation", "IL", "Initiative Lead"),
]


def seed_default_routing() -> dict:
    """Idempotently insert demo users and routing rows for stages 1–3.

    Returns:
        {"users": <inserted>, "routing_entries": <inserted>}
    """
    directory = UserDirectory()
    users_added = 0
    for full_name, email, site, discipline, role, role_name in _DEFAULT_USERS:
        if directory.find_by_email(email):
            continue
        db.session.add(User(
            full_name=full_name, email=email, site=site,
            discipline=discipline, role=role, role_name=role_name,
        ))
        users_added += 1

    table = RoutingTable(directory)
    entries_added = 0
    for site, rows in _DEFAULT_ROUTING.items():
        existing = {e.stage_number for e in table.entries_for_site(site)}
        for stage_number, stage_name, role, email in rows:
            if stage_number in existing:
                continue
            add_routing_entry(site, stage_number, stage_name, role, email)
            entries_added += 1

    db.session.commit()
    logger.info("Seeded %d users and %d routing entries", users_added, entries_added)
    return {"users": users_added, "routing_entries": entries_added}
