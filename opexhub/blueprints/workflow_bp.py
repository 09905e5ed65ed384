"""
Workflow Blueprint - stage ledger reads and stage decisions.

Routes:
  GET    /api/v1/workflow/initiatives/<iid>/ledger            – full ledger
  GET    /api/v1/workflow/initiatives/<iid>/visible           – visible rows only
  GET    /api/v1/workflow/initiatives/<iid>/current-pending   – lowest pending row
  GET    /api/v1/workflow/initiatives/<iid>/progress          – percent complete
  GET    /api/v1/workflow/initiatives/<iid>/access            – stage 6 / 9 access
  GET    /api/v1/workflow/pending/<role>                      – pending rows for a role
  GET    /api/v1/workflow/pending/<site>/<role>               – … scoped to a site
  POST   /api/v1/workflow/transactions/<tid>/act              – approve / reject
  POST   /api/v1/workflow/email-actions/<token>               – redeem an e-mail link
  GET    /api/v1/workflow/ready-for-closure                   – stage 10 approved
  GET    /api/v1/workflow/approved-stage/<n>                  – stage 6 / 9 lists
  GET    /api/v1/workflow/routing/<site>/reconcile            – routing drift report
  GET    /api/v1/workflow/notifications                       – in-app inbox
  POST   /api/v1/workflow/notifications/<nid>/read            – mark one read
"""

from flask import Blueprint, jsonify, request

from opexhub.blueprints import current_actor, json_body
from opexhub.services import initiative_service, notification, progress, stage_ledger
from opexhub.services.action_tokens import get_token_store
from opexhub.services.routing_table import RoutingTable
from opexhub.services.stage_engine import get_engine
from opexhub.services.visibility import get_visible_ledger
from opexhub.utils.errors import E, api_error, register_service_error_handlers

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1/workflow")
register_service_error_handlers(workflow_bp)

EMAIL_ACTION_COMMENT = "Actioned from e-mail link"


# ── helpers ──────────────────────────────────────────────────────────────

def _optional(data, field, expected, label):
    value = data.get(field)
    if value is None:
        return None, None
    if expected is int and isinstance(value, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be {label}")
    if not isinstance(value, expected):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be {label}")
    return value, None


# ═════════════════════════════════════════════════════════════════════════════
# LEDGER READS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/initiatives/<int:iid>/ledger", methods=["GET"])
def ledger(iid):
    initiative_service.get_initiative(iid)
    return jsonify([row.to_dict() for row in stage_ledger.get_ledger(iid)])


@workflow_bp.route("/initiatives/<int:iid>/visible", methods=["GET"])
def visible_ledger(iid):
    initiative_service.get_initiative(iid)
    return jsonify([row.to_dict() for row in get_visible_ledger(iid)])


@workflow_bp.route("/initiatives/<int:iid>/current-pending", methods=["GET"])
def current_pending(iid):
    initiative_service.get_initiative(iid)
    row = stage_ledger.get_current_pending(iid)
    if row is None:
        return api_error(E.NOT_FOUND, f"Initiative {iid} has no pending stage")
    return jsonify(row.to_dict())


@workflow_bp.route("/initiatives/<int:iid>/progress", methods=["GET"])
def initiative_progress(iid):
    return jsonify(progress.progress_summary(iid))


@workflow_bp.route("/initiatives/<int:iid>/access", methods=["GET"])
def stage_access(iid):
    email = request.args.get("email", "").strip()
    if not email:
        return api_error(E.VALIDATION_REQUIRED, "email query parameter is required")
    return jsonify(initiative_service.access_summary(iid, email, request.args.get("role")))


@workflow_bp.route("/pending/<role>", methods=["GET"])
def pending_for_role(role):
    return jsonify([row.to_dict() for row in stage_ledger.get_pending(role)])


@workflow_bp.route("/pending/<site>/<role>", methods=["GET"])
def pending_for_site_role(site, role):
    return jsonify([row.to_dict() for row in stage_ledger.get_pending(role, site=site)])


@workflow_bp.route("/ready-for-closure", methods=["GET"])
def ready_for_closure():
    return jsonify([i.to_summary() for i in stage_ledger.get_ready_for_closure()])


@workflow_bp.route("/approved-stage/<int:stage_number>", methods=["GET"])
def approved_stage(stage_number):
    email = request.args.get("email", "").strip()
    if not email:
        return api_error(E.VALIDATION_REQUIRED, "email query parameter is required")
    items = initiative_service.initiatives_with_approved_stage(
        stage_number, email, site=request.args.get("site") or None,
    )
    return jsonify([i.to_summary() for i in items])


@workflow_bp.route("/routing/<site>/reconcile", methods=["GET"])
def reconcile_routing(site):
    mismatches = RoutingTable().reconcile(site)
    return jsonify({"site": site, "consistent": not mismatches, "mismatches": mismatches})


# ═════════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/transactions/<int:tid>/act", methods=["POST"])
def act_on_transaction(tid):
    """Approve or reject a pending stage.

    Body: decision, comment, actor_name (or X-User), actor_email (or
    X-User-Email), assigned_user_id (stage 3), requires_moc, moc_number,
    requires_capex, capex_number.
    """
    data, err = json_body()
    if err:
        return err

    header_name, header_email = current_actor()
    fields = {}
    for field, expected, label in (
        ("decision", str, "a string"),
        ("comment", str, "a string"),
        ("actor_name", str, "a string"),
        ("actor_email", str, "a string"),
        ("assigned_user_id", int, "an integer"),
        ("requires_moc", bool, "a boolean"),
        ("moc_number", str, "a string"),
        ("requires_capex", bool, "a boolean"),
        ("capex_number", str, "a string"),
    ):
        fields[field], err = _optional(data, field, expected, label)
        if err:
            return err
    if not fields["decision"]:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")

    outcome = get_engine().act(
        tid,
        fields["decision"],
        fields["comment"] or "",
        fields["actor_name"] or header_name or "",
        assigned_user_id=fields["assigned_user_id"],
        actor_email=fields["actor_email"] or header_email,
        requires_moc=fields["requires_moc"],
        moc_number=fields["moc_number"],
        requires_capex=fields["requires_capex"],
        capex_number=fields["capex_number"],
    )
    return jsonify(outcome.to_dict()), 200


@workflow_bp.route("/email-actions/<token>", methods=["POST"])
def email_action(token):
    """Redeem a one-time approve / reject link from a notification."""
    data = request.get_json(silent=True) or {}
    comment = data.get("comment") if isinstance(data, dict) else None
    if comment is not None and not isinstance(comment, str):
        return api_error(E.VALIDATION_INVALID, "comment must be a string")

    claim = get_token_store().consume(token)
    recipient = claim["recipient"]
    outcome = get_engine().act(
        claim["transaction_id"],
        claim["decision"],
        comment or EMAIL_ACTION_COMMENT,
        recipient,
        actor_email=recipient if "@" in recipient else None,
    )
    return jsonify(outcome.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/notifications", methods=["GET"])
def list_notifications():
    recipient = request.args.get("recipient", "").strip()
    if not recipient:
        return api_error(E.VALIDATION_REQUIRED, "recipient query parameter is required")
    unread_only = request.args.get("unread") == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    items = notification.list_for_recipient(recipient, unread_only=unread_only, limit=limit)
    return jsonify({"items": [n.to_dict() for n in items], "total": len(items)})


@workflow_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def read_notification(nid):
    return jsonify(notification.mark_read(nid).to_dict())
