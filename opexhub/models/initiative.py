"""
OpEx Hub - Initiative aggregate.

The initiative carries summary fields that mirror the stage ledger frontier:

    status          pending → in_progress → completed
                    any     → rejected (terminal)
    current_stage   highest approved stage + 1, capped at the last stage
    assigned_lead_id the Initiative Lead chosen when stage 3 is approved

These three fields (and the MOC / CAPEX flags) are written only by
``opexhub.services.stage_engine``.  Everything else is registration data.
"""

from datetime import datetime, timezone

from opexhub.models import db

# ── Constants ────────────────────────────────────────────────────────────────

INITIATIVE_PENDING = "pending"
INITIATIVE_IN_PROGRESS = "in_progress"
INITIATIVE_COMPLETED = "completed"
INITIATIVE_REJECTED = "rejected"

# Terminal states: no further stage rows may be created
INITIATIVE_TERMINAL_STATUSES = frozenset({INITIATIVE_COMPLETED, INITIATIVE_REJECTED})

INITIATIVE_PRIORITIES = frozenset({"low", "medium", "high", "critical"})

# Discipline → two-letter category code used in the initiative number
DISCIPLINE_CATEGORY_CODES = {
    "operation": "OP",
    "engineering & utility": "EG",
    "engineering": "EG",
    "environment": "EV",
    "safety": "SF",
    "quality": "QA",
    "others": "OT",
}


class Initiative(db.Model):
    """
    Improvement project tracked through the 11-stage approval pipeline.

    Never deleted while ledger rows reference it (FK ``ON DELETE RESTRICT``
    on ``stage_transactions.initiative_id``).
    """

    __tablename__ = "initiatives"

    id = db.Column(db.Integer, primary_key=True)
    initiative_number = db.Column(
        db.String(40), unique=True, nullable=False,
        comment="SITE/YY/CC/DD/NNN - see initiative_service.generate_initiative_number",
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    site = db.Column(db.String(20), nullable=False, index=True)
    discipline = db.Column(db.String(100), nullable=False)
    priority = db.Column(db.String(20), default="medium")
    expected_savings = db.Column(db.Numeric(15, 2), nullable=True)

    # Frontier fields - engine-owned
    status = db.Column(db.String(20), nullable=False, default=INITIATIVE_PENDING, index=True)
    current_stage = db.Column(db.Integer, nullable=False, default=1)
    assigned_lead_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # MOC / CAPEX flags captured while the lead works stages 4–5
    requires_moc = db.Column(db.Boolean, nullable=True)
    moc_number = db.Column(db.String(100), nullable=True)
    requires_capex = db.Column(db.Boolean, nullable=True)
    capex_number = db.Column(db.String(100), nullable=True)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    initiator_name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assigned_lead = db.relationship("User", foreign_keys=[assigned_lead_id])
    transactions = db.relationship(
        "StageTransaction",
        back_populates="initiative",
        order_by="StageTransaction.stage_number",
        lazy="dynamic",
        passive_deletes="all",
    )

    @property
    def is_terminal(self):
        return self.status in INITIATIVE_TERMINAL_STATUSES

    def to_summary(self):
        """Compact form used in notification payloads and closure lists."""
        return {
            "id": self.id,
            "initiative_number": self.initiative_number,
            "title": self.title,
            "site": self.site,
            "status": self.status,
            "current_stage": self.current_stage,
            "expected_savings": float(self.expected_savings) if self.expected_savings is not None else None,
        }

    def to_dict(self):
        data = self.to_summary()
        data.update({
            "description": self.description,
            "discipline": self.discipline,
            "priority": self.priority,
            "assigned_lead_id": self.assigned_lead_id,
            "requires_moc": self.requires_moc,
            "moc_number": self.moc_number,
            "requires_capex": self.requires_capex,
            "capex_number": self.capex_number,
            "created_by_id": self.created_by_id,
            "initiator_name": self.initiator_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        })
        return data

    def __repr__(self):
        return f"<Initiative #{self.id} {self.initiative_number} stage={self.current_stage} {self.status}>"
