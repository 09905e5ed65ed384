"""
OpEx Hub - Notification dispatch.

The dispatcher is called by the stage engine after a transition commits.
It tells the next addressee that a stage is waiting for them: builds the
payload, issues one-time approve / reject tokens, stores an in-app
Notification and logs the payload.  Delivery is best effort: any failure is
logged and swallowed, the stage transition stays committed.
"""

import logging

from sqlalchemy import select

from opexhub.core.exceptions import NotFoundError
from opexhub.models import db
from opexhub.models.notification import Notification
from opexhub.models.workflow import DECISION_APPROVE, DECISION_REJECT, PENDING_WITH_USER, STAGE_PENDING

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Builds and records stage hand-over notifications."""

    def __init__(self, token_store=None):
        self.token_store = token_store

    def build_payload(self, previous_row, next_row, initiative, actor_name):
        payload = {
            "initiative": {
                "id": initiative.id,
                "initiative_number": initiative.initiative_number,
                "title": initiative.title,
                "site": initiative.site,
            },
            "completed_stage": {
                "stage_number": previous_row.stage_number,
                "stage_name": previous_row.stage_name,
                "status": previous_row.status,
            },
            "next_stage": {
                "transaction_id": next_row.id,
                "stage_number": next_row.stage_number,
                "stage_name": next_row.stage_name,
                "status": next_row.status,
            },
            "recipient": next_row.pending_with,
            "recipient_kind": next_row.pending_with_kind,
            "actor": actor_name,
            "action_tokens": {},
        }
        if self.token_store is not None and next_row.status == STAGE_PENDING and next_row.pending_with:
            payload["action_tokens"] = {
                decision: self.token_store.issue(next_row.id, decision, next_row.pending_with)
                for decision in (DECISION_APPROVE, DECISION_REJECT)
            }
        return payload

    def notify(self, previous_row, next_row, initiative, actor_name):
        """Record the hand-over.  Returns the payload, or None on failure."""
        try:
            payload = self.build_payload(previous_row, next_row, initiative, actor_name)
            notif = Notification(
                initiative_id=initiative.id,
                recipient=payload["recipient"] or next_row.required_role or "unassigned",
                title=f"{initiative.initiative_number}: {next_row.stage_name} awaiting your action",
                message=(
                    f"Stage {previous_row.stage_number} ({previous_row.stage_name}) was "
                    f"{previous_row.status} by {actor_name}. Stage {next_row.stage_number} "
                    f"is now {next_row.status}."
                ),
                category="workflow",
                severity="info" if payload["recipient_kind"] == PENDING_WITH_USER else "warning",
                entity_type="stage_transaction",
                entity_id=next_row.id,
            )
            db.session.add(notif)
            db.session.commit()
            logger.info(
                "Notified %s about stage %d of initiative %s",
                payload["recipient"], next_row.stage_number, initiative.id,
                extra={"initiative_id": initiative.id, "stage_number": next_row.stage_number},
            )
            return payload
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification for initiative %s stage %s failed",
                getattr(initiative, "id", None), getattr(next_row, "stage_number", None),
            )
            return None


# ── Inbox queries ──────────────────────────────────────────────────────────────


def list_for_recipient(recipient, unread_only=False, limit=50):
    """Notifications for a recipient, newest first."""
    stmt = select(Notification).where(Notification.recipient == recipient)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return list(db.session.execute(stmt).scalars().all())


def mark_read(notification_id):
    notif = db.session.get(Notification, notification_id)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=notification_id)
    notif.mark_read()
    db.session.commit()
    return notif
