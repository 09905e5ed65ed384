"""
Tests: notification dispatch after stage transitions.
"""

import logging

from sqlalchemy import select

from opexhub.models import db as _db
from opexhub.models.notification import Notification
from opexhub.services import notification, stage_ledger
from opexhub.services.initiative_service import register_initiative
from opexhub.services.notification import NotificationDispatcher
from opexhub.services.stage_engine import StageProgressionEngine


def _register(engine):
    return register_initiative(
        {"title": "Flare gas recovery", "site": "NDS", "discipline": "Environment"}, "Kavya Nair", engine,
    )


def _notifications(recipient):
    return list(_db.session.execute(
        select(Notification).where(Notification.recipient == recipient).order_by(Notification.id)
    ).scalars())


def test_seed_notifies_stage_two_addressee(engine, nds_routing):
    initiative = _register(engine)

    items = _notifications("ravi.kumar@godeepak.com")
    assert len(items) == 1
    assert items[0].initiative_id == initiative.id
    assert items[0].entity_id == stage_ledger.get_stage_row(initiative.id, 2).id
    assert "Evaluation and Approval" in items[0].title


def test_payload_carries_redeemable_action_tokens(app, engine, nds_routing):
    initiative = _register(engine)
    second = stage_ledger.get_stage_row(initiative.id, 2)
    third_outcome = engine.act(second.id, "approve", "ok", "Ravi")
    dispatcher = NotificationDispatcher(app.extensions["action_tokens"])

    payload = dispatcher.build_payload(second, third_outcome.next_transaction, initiative, "Ravi")

    assert payload["recipient"] == "ananya.verma@godeepak.com"
    assert payload["recipient_kind"] == "user"
    assert payload["completed_stage"]["stage_number"] == 2
    assert payload["next_stage"]["stage_number"] == 3
    claim = app.extensions["action_tokens"].consume(payload["action_tokens"]["reject"])
    assert claim == {
        "transaction_id": third_outcome.next_transaction.id,
        "decision": "reject",
        "recipient": "ananya.verma@godeepak.com",
        "issued_at": claim["issued_at"],
    }


def test_stage_eleven_approval_sends_nothing(engine, nds_routing):
    initiative = _register(engine)
    for stage in range(2, 11):
        row = stage_ledger.get_stage_row(initiative.id, stage)
        engine.act(row.id, "approve", "ok", "Approver", assigned_user_id=42 if stage == 3 else None)
    before = _db.session.query(Notification).count()

    row = stage_ledger.get_stage_row(initiative.id, 11)
    engine.act(row.id, "approve", "closed", "Approver")

    assert _db.session.query(Notification).count() == before


def test_rejection_sends_nothing(engine, nds_routing):
    initiative = _register(engine)
    before = _db.session.query(Notification).count()

    engine.act(stage_ledger.get_stage_row(initiative.id, 2).id, "reject", "no", "Ravi")

    assert _db.session.query(Notification).count() == before


class _BrokenTokenStore:
    def issue(self, *args, **kwargs):
        raise RuntimeError("token store down")


def test_dispatch_failure_is_logged_not_raised(caplog, engine, nds_routing):
    initiative = _register(engine)
    original = engine.dispatcher
    engine.dispatcher = NotificationDispatcher(_BrokenTokenStore())
    try:
        with caplog.at_level(logging.ERROR, logger="opexhub.services.notification"):
            outcome = engine.act(
                stage_ledger.get_stage_row(initiative.id, 2).id, "approve", "ok", "Ravi",
            )
    finally:
        engine.dispatcher = original

    assert outcome.transaction.status == "approved"
    assert stage_ledger.get_stage_row(initiative.id, 3).status == "pending"
    assert any("Notification for initiative" in r.getMessage() for r in caplog.records)


def test_inbox_lists_and_marks_read(engine, nds_routing):
    _register(engine)

    items = notification.list_for_recipient("ravi.kumar@godeepak.com", unread_only=True)
    assert len(items) == 1

    notification.mark_read(items[0].id)

    assert notification.list_for_recipient("ravi.kumar@godeepak.com", unread_only=True) == []
    assert len(notification.list_for_recipient("ravi.kumar@godeepak.com")) == 1


class _RaisingDispatcher:
    def notify(self, previous_row, next_row, initiative, actor_name):
        raise RuntimeError("smtp down")


def test_raising_dispatcher_never_undoes_transition(caplog, nds_routing):
    engine = StageProgressionEngine(dispatcher=_RaisingDispatcher())

    with caplog.at_level(logging.ERROR, logger="opexhub.services.stage_engine"):
        initiative = _register(engine)
        outcome = engine.act(stage_ledger.get_stage_row(initiative.id, 2).id, "approve", "ok", "Ravi")

    assert outcome.transaction.status == "approved"
    assert [(r.stage_number, r.status) for r in stage_ledger.get_ledger(initiative.id)] == [
        (1, "approved"), (2, "approved"), (3, "pending"),
    ]
    failures = [r for r in caplog.records if "Dispatcher failed" in r.getMessage()]
    assert len(failures) == 2
