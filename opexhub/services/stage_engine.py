"""
Stage Progression Engine - seeds the ledger and applies stage decisions.

Continuation after approving stage N:

     2        create 3 pending, routed through the routing table
     3        create 4 pending + 5, 6 not_started, all carrying the chosen lead
     4, 5     activate the pre-created N+1 row for the lead
     6 – 10   create N+1 pending for the first user of the (site, role) pool
     11       no row; initiative completed

A rejection at any stage is terminal for the initiative.

``act`` is the only mutating entry point.  Each call is one database
transaction: read, validate, compare-and-set the row, write downstream rows,
update the initiative, commit.  The notification dispatcher runs after the
commit and can never roll a transition back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from opexhub.core.exceptions import (
    ConflictError,
    MisconfiguredRoutingError,
    NotAssigneeError,
    NotPendingError,
    UnresolvedRoleError,
    ValidationError,
)
from opexhub.models import db
from opexhub.models.initiative import (
    INITIATIVE_COMPLETED,
    INITIATIVE_IN_PROGRESS,
    INITIATIVE_PENDING,
    INITIATIVE_REJECTED,
    Initiative,
)
from opexhub.models.workflow import (
    DECISION_APPROVE,
    DECISIONS,
    FIRST_STAGE,
    LAST_STAGE,
    LEAD_ROLE,
    LEAD_SELECTION_STAGE,
    LEAD_STAGES,
    PENDING_WITH_ROLE,
    PENDING_WITH_USER,
    REGISTERED_COMMENT,
    ROLE_ROUTED_STAGES,
    STAGE_APPROVED,
    STAGE_NOT_STARTED,
    STAGE_PENDING,
    STAGE_REJECTED,
    StageTransaction,
)
from opexhub.services import stage_ledger
from opexhub.services.routing_table import RoutingTable
from opexhub.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

_FLAG_FIELDS = ("requires_moc", "moc_number", "requires_capex", "capex_number")


@dataclass
class ActOutcome:
    """Result of a successful ``act``."""

    transaction: StageTransaction
    initiative: Initiative
    next_transaction: StageTransaction | None = None

    def to_dict(self):
        return {
            "transaction": self.transaction.to_dict(),
            "next_transaction": self.next_transaction.to_dict() if self.next_transaction else None,
            "initiative": self.initiative.to_summary(),
        }


class StageProgressionEngine:
    """Stateless engine; every call reads the ledger fresh."""

    def __init__(self, routing=None, directory=None, dispatcher=None,
                 *, role_queue_fallback=False, max_stage=LAST_STAGE):
        self.directory = directory or UserDirectory()
        self.routing = routing or RoutingTable(self.directory)
        self.dispatcher = dispatcher
        self.role_queue_fallback = role_queue_fallback
        self.max_stage = max_stage

    # ── Seeding ───────────────────────────────────────────────────────────

    def seed(self, initiative: Initiative, creator_name: str) -> list[StageTransaction]:
        """Write stage 1 (approved, no human actor) and stage 2 (pending).

        Raises:
            ConflictError: the initiative already has ledger rows.
            MisconfiguredRoutingError: stage 1 or 2 has no active routing
                entry for the site; nothing is written.
        """
        try:
            if initiative.id is None:
                db.session.flush()
            if stage_ledger.count_rows(initiative.id):
                raise ConflictError("StageTransaction", "initiative_id", str(initiative.id))

            first = self._require_routing(initiative.site, FIRST_STAGE)
            second = self._require_routing(initiative.site, FIRST_STAGE + 1)

            now = datetime.now(timezone.utc)
            registered = stage_ledger.insert_row(
                initiative, FIRST_STAGE, first.stage_name,
                status=STAGE_APPROVED,
                required_role=first.required_role,
                pending_with=first.default_user_email,
                pending_with_kind=PENDING_WITH_USER,
                action_by=creator_name,
                action_at=now,
                comment=REGISTERED_COMMENT,
            )
            pending = stage_ledger.insert_row(
                initiative, second.stage_number, second.stage_name,
                status=STAGE_PENDING,
                required_role=second.required_role,
                pending_with=second.default_user_email,
                pending_with_kind=PENDING_WITH_USER,
            )
            initiative.current_stage = second.stage_number
            initiative.status = INITIATIVE_PENDING
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("StageTransaction", "initiative_id", str(initiative.id)) from exc
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Seeded ledger for initiative %s (stage 2 with %s)",
            initiative.id, pending.pending_with,
            extra={"initiative_id": initiative.id, "stage_number": pending.stage_number, "actor": creator_name},
        )
        self._notify(registered, pending, initiative, creator_name)
        return [registered, pending]

    # ── Acting ────────────────────────────────────────────────────────────

    def act(self, transaction_id: int, decision: str, comment: str, actor_name: str,
            assigned_user_id: int | None = None, actor_email: str | None = None,
            requires_moc=None, moc_number=None, requires_capex=None, capex_number=None) -> ActOutcome:
        """Approve or reject a pending stage.

        Args:
            transaction_id: Ledger row to decide.
            decision: "approve" or "reject" (past-tense spellings accepted).
            comment: Mandatory remark.
            actor_name: Recorded as ``action_by``.
            assigned_user_id: Initiative Lead, mandatory when approving stage 3.
            actor_email: When given, must be the row's addressee.
            requires_moc / moc_number / requires_capex / capex_number:
                Optional domain flags, recorded on approval and mirrored
                onto the initiative.

        Raises:
            NotFoundError, NotPendingError, ValidationError, NotAssigneeError,
            MisconfiguredRoutingError, UnresolvedRoleError.
        """
        flags = {
            "requires_moc": requires_moc,
            "moc_number": moc_number,
            "requires_capex": requires_capex,
            "capex_number": capex_number,
        }
        try:
            outcome = self._act(
                transaction_id, decision, comment, actor_name,
                assigned_user_id, actor_email,
                {k: v for k, v in flags.items() if v is not None},
            )
            db.session.commit()
        except IntegrityError as exc:
            # A concurrent action already wrote the downstream rows
            db.session.rollback()
            raise NotPendingError(transaction_id) from exc
        except Exception:
            db.session.rollback()
            raise

        row = outcome.transaction
        logger.info(
            "Stage %d %s for initiative %s by %s",
            row.stage_number, row.status, row.initiative_id, actor_name,
            extra={
                "initiative_id": row.initiative_id,
                "stage_number": row.stage_number,
                "decision": row.status,
                "actor": actor_name,
            },
        )
        if outcome.next_transaction is not None:
            self._notify(row, outcome.next_transaction, outcome.initiative, actor_name)
        return outcome

    def _act(self, transaction_id, decision, comment, actor_name, assigned_user_id, actor_email, flags):
        row = stage_ledger.get_row(transaction_id, for_update=True)
        initiative = db.session.get(Initiative, row.initiative_id)

        if row.status != STAGE_PENDING:
            raise NotPendingError(row.id, row.status)
        if initiative.is_terminal:
            raise NotPendingError(row.id, f"initiative {initiative.status}")

        canonical = DECISIONS.get((decision or "").strip().lower())
        if canonical is None:
            raise ValidationError(
                f"Unknown decision {decision!r}", details={"decision": "must be approve or reject"},
            )
        if not (comment or "").strip():
            raise ValidationError("comment is required", details={"comment": "blank"})
        if not (actor_name or "").strip():
            raise ValidationError("actor_name is required", details={"actor_name": "blank"})
        if actor_email:
            self._check_addressee(row, actor_email)

        now = datetime.now(timezone.utc)
        recorded = {"action_by": actor_name, "action_at": now, "comment": comment.strip()}

        if canonical != DECISION_APPROVE:
            stage_ledger.claim_pending(row, STAGE_REJECTED, **recorded)
            initiative.status = INITIATIVE_REJECTED
            db.session.flush()
            return ActOutcome(transaction=row, initiative=initiative)

        lead = None
        if row.stage_number == LEAD_SELECTION_STAGE:
            lead = self._require_lead(assigned_user_id)
            recorded["assigned_user_id"] = lead.id
        recorded.update(flags)

        stage_ledger.claim_pending(row, STAGE_APPROVED, **recorded)
        next_row = self._continue(initiative, row, lead)

        initiative.current_stage = min(row.stage_number + 1, self.max_stage)
        initiative.status = INITIATIVE_COMPLETED if row.stage_number >= self.max_stage else INITIATIVE_IN_PROGRESS
        if lead is not None:
            initiative.assigned_lead_id = lead.id
        for field in _FLAG_FIELDS:
            if field in flags:
                setattr(initiative, field, flags[field])
        db.session.flush()
        return ActOutcome(transaction=row, initiative=initiative, next_transaction=next_row)

    # ── Continuations ─────────────────────────────────────────────────────

    def _continue(self, initiative, row, lead):
        stage = row.stage_number
        if stage >= self.max_stage:
            return None
        if stage == LEAD_SELECTION_STAGE:
            return self._create_lead_stages(initiative, lead)
        if stage + 1 in LEAD_STAGES:
            return self._activate_lead_stage(initiative, stage + 1)
        if stage + 1 in ROLE_ROUTED_STAGES:
            return self._create_role_routed(initiative, stage + 1)
        return self._create_table_routed(initiative, stage + 1)

    def _create_table_routed(self, initiative, stage_number):
        entry = self._require_routing(initiative.site, stage_number)
        return stage_ledger.insert_row(
            initiative, stage_number, entry.stage_name,
            status=STAGE_PENDING,
            required_role=entry.required_role,
            pending_with=entry.default_user_email,
            pending_with_kind=PENDING_WITH_USER,
        )

    def _create_lead_stages(self, initiative, lead):
        first_pending = None
        for stage_number in sorted(LEAD_STAGES):
            is_first = first_pending is None
            row = stage_ledger.insert_row(
                initiative, stage_number, LEAD_STAGES[stage_number],
                status=STAGE_PENDING if is_first else STAGE_NOT_STARTED,
                required_role=LEAD_ROLE,
                pending_with=lead.email if is_first else None,
                pending_with_kind=PENDING_WITH_USER if is_first else None,
                assigned_user_id=lead.id,
            )
            if is_first:
                first_pending = row
        return first_pending

    def _activate_lead_stage(self, initiative, stage_number):
        row = stage_ledger.get_stage_row(initiative.id, stage_number)
        if row is None:
            raise MisconfiguredRoutingError(initiative.site, stage_number)
        lead = self.directory.find_by_id(row.assigned_user_id)
        if lead is None:
            raise UnresolvedRoleError(initiative.site, LEAD_ROLE, stage_number)
        return stage_ledger.activate_row(row, lead.email, PENDING_WITH_USER)

    def _create_role_routed(self, initiative, stage_number):
        stage_name, role = ROLE_ROUTED_STAGES[stage_number]
        pool = self.routing.resolve_by_role(initiative.site, role)
        if pool:
            chosen = pool[0]
            pending_with, kind, user_id = chosen.email, PENDING_WITH_USER, chosen.id
        elif self.role_queue_fallback:
            logger.warning(
                "No active %s at %s; queueing stage %d on the role",
                role, initiative.site, stage_number,
            )
            pending_with, kind, user_id = role, PENDING_WITH_ROLE, None
        else:
            raise UnresolvedRoleError(initiative.site, role, stage_number)
        return stage_ledger.insert_row(
            initiative, stage_number, stage_name,
            status=STAGE_PENDING,
            required_role=role,
            pending_with=pending_with,
            pending_with_kind=kind,
            assigned_user_id=user_id,
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    def _require_routing(self, site, stage_number):
        entry = self.routing.lookup(site, stage_number)
        if entry is None:
            raise MisconfiguredRoutingError(site, stage_number)
        return entry

    def _require_lead(self, assigned_user_id):
        if assigned_user_id is None:
            raise ValidationError(
                "assigned_user_id is required to approve this stage",
                details={"assigned_user_id": "required"},
            )
        lead = self.directory.find_by_id(assigned_user_id)
        if lead is None or not lead.is_active:
            raise ValidationError(
                f"User {assigned_user_id} is not an active user",
                details={"assigned_user_id": "unknown or inactive"},
            )
        return lead

    def _check_addressee(self, row, actor_email):
        if row.pending_with_kind == PENDING_WITH_ROLE:
            actor = self.directory.find_by_email(actor_email)
            if actor is not None and actor.role == row.pending_with and actor.site == row.site:
                return
        elif (row.pending_with or "").lower() == actor_email.strip().lower():
            return
        raise NotAssigneeError(row.id, actor_email)

    def _notify(self, previous_row, next_row, initiative, actor_name):
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.notify(previous_row, next_row, initiative, actor_name)
        except Exception:
            db.session.rollback()
            logger.exception(
                "Dispatcher failed for initiative %s stage %s", initiative.id, next_row.stage_number,
            )


def init_stage_engine(app, dispatcher):
    """Build the engine from app config and register it in ``app.extensions``."""
    engine = StageProgressionEngine(
        dispatcher=dispatcher,
        role_queue_fallback=app.config.get("WORKFLOW_ROLE_QUEUE_FALLBACK", False),
        max_stage=app.config.get("WORKFLOW_MAX_STAGE", LAST_STAGE),
    )
    app.extensions["stage_engine"] = engine
    return engine


def get_engine() -> StageProgressionEngine:
    return current_app.extensions["stage_engine"]
