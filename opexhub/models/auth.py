"""
OpEx Hub - User directory model.

Users are provisioned out of band (see the ``seed-routing`` CLI command for
demo data).  The stage engine only reads this table: to address lead-owned
stages to the chosen Initiative Lead and to resolve role pools for the
role-routed stages.
"""

from datetime import datetime, timezone

from opexhub.models import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True)
    site = db.Column(db.String(20), nullable=False, index=True)
    discipline = db.Column(db.String(100))
    role = db.Column(db.String(20), nullable=False, index=True, comment="STLD | SH | CTSD | HOD | IL | F&A")
    role_name = db.Column(db.String(200))
    routing_priority = db.Column(
        db.Integer,
        nullable=True,
        comment="Lower value wins when several users share (site, role); NULL sorts last",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_site_role", "site", "role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "site": self.site,
            "discipline": self.discipline,
            "role": self.role,
            "role_name": self.role_name,
            "routing_priority": self.routing_priority,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User #{self.id} {self.email} {self.site}/{self.role}>"
