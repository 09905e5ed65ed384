"""
Initiative Blueprint.

Routes:
  POST   /api/v1/initiatives          – register an initiative and seed its ledger
  GET    /api/v1/initiatives/<iid>    – initiative detail
"""

from flask import Blueprint, current_app, jsonify

from opexhub.blueprints import current_actor, json_body
from opexhub.services import initiative_service
from opexhub.services.stage_engine import get_engine
from opexhub.services.visibility import get_visible_ledger
from opexhub.utils.errors import E, api_error, register_service_error_handlers

initiative_bp = Blueprint("initiative_bp", __name__, url_prefix="/api/v1/initiatives")
register_service_error_handlers(initiative_bp)


@initiative_bp.route("", methods=["POST"])
def create_initiative():
    data, err = json_body()
    if err:
        return err
    for field in ("title", "site", "discipline", "description", "priority"):
        if data.get(field) is not None and not isinstance(data[field], str):
            return api_error(E.VALIDATION_INVALID, f"{field} must be a string")
    savings = data.get("expected_savings")
    if savings is not None and (isinstance(savings, bool) or not isinstance(savings, (int, float, str))):
        return api_error(E.VALIDATION_INVALID, "expected_savings must be a number")

    header_name, _ = current_actor()
    initiator = data.get("initiator_name") or header_name
    if initiator is not None and not isinstance(initiator, str):
        return api_error(E.VALIDATION_INVALID, "initiator_name must be a string")
    creator_id = data.get("created_by_id")
    if creator_id is not None and (isinstance(creator_id, bool) or not isinstance(creator_id, int)):
        return api_error(E.VALIDATION_INVALID, "created_by_id must be an integer")

    initiative = initiative_service.register_initiative(
        data, initiator or "", get_engine(), creator_id=creator_id,
    )
    current_app.logger.info("Initiative %s registered via API", initiative.initiative_number)
    body = initiative.to_dict()
    body["ledger"] = [row.to_dict() for row in get_visible_ledger(initiative.id)]
    return jsonify(body), 201


@initiative_bp.route("/<int:iid>", methods=["GET"])
def get_initiative(iid):
    return jsonify(initiative_service.get_initiative(iid).to_dict())
