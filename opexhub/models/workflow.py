"""
OpEx Hub - Stage ledger and routing table models.

Models:
    - StageTransaction: one ledger row per (initiative, stage number)
    - RoutingEntry: static per-site default routing for a stage number

Stage layout (authoritative definitions used by the progression engine):

     1  Register Initiative                      routing table
     2  Evaluation and Approval                  routing table
     3  Initiative assessment and approval       routing table
     4  MOC Stage                                IL (lead chosen at stage 3)
     5  CAPEX Stage                              IL
     6  Initiative Timeline Tracker              IL
     7  Trial Implementation & Performance Check STLD role pool
     8  Periodic Status Review with CMO          CTSD role pool
     9  Savings Monitoring (1 Month)             STLD role pool
    10  Saving Validation with F&A               STLD role pool
    11  Initiative Closure                       STLD role pool

Row lifecycle:
    not_started → pending → approved | rejected
A row is immutable once it leaves ``pending``.
"""

from datetime import datetime, timezone

from opexhub.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STAGE_NOT_STARTED = "not_started"
STAGE_PENDING = "pending"
STAGE_APPROVED = "approved"
STAGE_REJECTED = "rejected"

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

# Accepted spellings of a decision → canonical decision
DECISIONS = {
    "approve": DECISION_APPROVE,
    "approved": DECISION_APPROVE,
    "reject": DECISION_REJECT,
    "rejected": DECISION_REJECT,
}

PENDING_WITH_USER = "user"
PENDING_WITH_ROLE = "role"

FIRST_STAGE = 1
LAST_STAGE = 11
REGISTERED_COMMENT = "registered"

# Stage whose approval chooses the Initiative Lead
LEAD_SELECTION_STAGE = 3

LEAD_ROLE = "IL"

# Lead-owned stages, created together when stage 3 is approved
LEAD_STAGES = {
    4: "MOC Stage",
    5: "CAPEX Stage",
    6: "Initiative Timeline Tracker",
}

# Stages routed to the first user of a (site, role) pool
ROLE_ROUTED_STAGES = {
    7: ("Trial Implementation & Performance Check", "STLD"),
    8: ("Periodic Status Review with CMO", "CTSD"),
    9: ("Savings Monitoring (1 Month)", "STLD"),
    10: ("Saving Validation with F&A", "STLD"),
    11: ("Initiative Closure", "STLD"),
}

TIMELINE_TRACKER_STAGE = 6
SAVINGS_MONITORING_STAGE = 9
CLOSURE_READY_STAGE = 10


def engine_stage_definition(stage_number):
    """Return ``(stage_name, required_role)`` the engine uses for a stage ≥ 4, else None."""
    if stage_number in LEAD_STAGES:
        return LEAD_STAGES[stage_number], LEAD_ROLE
    return ROLE_ROUTED_STAGES.get(stage_number)


class StageTransaction(db.Model):
    """
    Ledger row: the status of one stage for one initiative.

    ``pending_with`` holds either a user e-mail or a role code;
    ``pending_with_kind`` says which.  ``version`` is bumped on every
    status change and guards the compare-and-set in
    ``stage_ledger.claim_pending``.
    """

    __tablename__ = "stage_transactions"

    id = db.Column(db.Integer, primary_key=True)
    initiative_id = db.Column(
        db.Integer,
        db.ForeignKey("initiatives.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    stage_number = db.Column(db.Integer, nullable=False)
    stage_name = db.Column(db.String(200), nullable=False)
    site = db.Column(db.String(20), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=STAGE_PENDING,
        comment="not_started | pending | approved | rejected",
    )
    required_role = db.Column(db.String(20), nullable=True)
    pending_with = db.Column(db.String(200), nullable=True, comment="User e-mail or role code")
    pending_with_kind = db.Column(db.String(10), nullable=True, comment="user | role")
    assigned_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    action_by = db.Column(db.String(200), nullable=True)
    action_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comment = db.Column(db.Text, nullable=True)

    requires_moc = db.Column(db.Boolean, nullable=True)
    moc_number = db.Column(db.String(100), nullable=True)
    requires_capex = db.Column(db.Boolean, nullable=True)
    capex_number = db.Column(db.String(100), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    initiative = db.relationship("Initiative", back_populates="transactions")
    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])

    __table_args__ = (
        db.UniqueConstraint("initiative_id", "stage_number", name="uq_stage_txn_initiative_stage"),
        db.Index("ix_stage_txn_status_pending_with", "status", "pending_with"),
        db.Index("ix_stage_txn_stage_status", "stage_number", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "initiative_id": self.initiative_id,
            "stage_number": self.stage_number,
            "stage_name": self.stage_name,
            "site": self.site,
            "status": self.status,
            "required_role": self.required_role,
            "pending_with": self.pending_with,
            "pending_with_kind": self.pending_with_kind,
            "assigned_user_id": self.assigned_user_id,
            "action_by": self.action_by,
            "action_at": self.action_at.isoformat() if self.action_at else None,
            "comment": self.comment,
            "requires_moc": self.requires_moc,
            "moc_number": self.moc_number,
            "requires_capex": self.requires_capex,
            "capex_number": self.capex_number,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StageTransaction #{self.id} initiative={self.initiative_id} stage={self.stage_number} {self.status}>"


class RoutingEntry(db.Model):
    """Static routing for one stage at one site (seeded, read-only for the engine)."""

    __tablename__ = "routing_entries"

    id = db.Column(db.Integer, primary_key=True)
    site = db.Column(db.String(20), nullable=False)
    stage_number = db.Column(db.Integer, nullable=False)
    stage_name = db.Column(db.String(200), nullable=False)
    required_role = db.Column(db.String(20), nullable=False)
    default_user_email = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("site", "stage_number", name="uq_routing_site_stage"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "site": self.site,
            "stage_number": self.stage_number,
            "stage_name": self.stage_name,
            "required_role": self.required_role,
            "default_user_email": self.default_user_email,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<RoutingEntry {self.site}#{self.stage_number} {self.required_role}>"
