"""
User directory lookups consumed by the stage engine.

Role pools are returned in a deterministic order:
    routing_priority ASC (NULL last), full_name ASC, id ASC
so that "first user of the pool" is stable across databases.
"""

from __future__ import annotations

from sqlalchemy import func, select

from opexhub.models import db
from opexhub.models.auth import User


class UserDirectory:
    """Read-only view over the ``users`` table."""

    def find_by_id(self, user_id: int | None) -> User | None:
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    def find_by_email(self, email: str | None) -> User | None:
        if not email:
            return None
        return db.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        ).scalar_one_or_none()

    def find_by_site_and_role(self, site: str, role: str) -> list[User]:
        """Active users holding ``role`` at ``site``, deterministically ordered."""
        stmt = (
            select(User)
            .where(User.site == site, User.role == role, User.is_active.is_(True))
            .order_by(
                User.routing_priority.is_(None),
                User.routing_priority.asc(),
                User.full_name.asc(),
                User.id.asc(),
            )
        )
        return list(db.session.execute(stmt).scalars().all())
