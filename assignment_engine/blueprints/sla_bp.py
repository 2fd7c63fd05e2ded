"""
SLA Blueprint.

Endpoints:
    GET  /api/v1/sla                                    list records (?status=&item_type=&limit=)
    GET  /api/v1/sla/<item_type>/<item_id>              every record of one item
    POST /api/v1/sla/<item_type>/<item_id>/recompute    recompute that item's open record
    POST /api/v1/sla/recompute                          recompute every open record
"""

import logging

from flask import Blueprint, jsonify, request

from assignment_engine.blueprints import register_service_error_handlers
from assignment_engine.models.sla import SLA_STATUSES
from assignment_engine.models.work_item import ITEM_TYPES
from assignment_engine.services import sla_tracker
from assignment_engine.services.assignment_service import get_work_item
from assignment_engine.utils.errors import E, api_error
from assignment_engine.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

sla_bp = Blueprint("sla_bp", __name__, url_prefix="/api/v1/sla")
register_service_error_handlers(sla_bp)


def _check_item_type(item_type):
    if item_type not in ITEM_TYPES:
        return api_error(E.VALIDATION_INVALID, f"item_type must be one of {sorted(ITEM_TYPES)}")
    return None


def _clock_from_body():
    """Optional ``{"now": ISO-8601}`` override, used for backfills and replays."""
    data = request.get_json(silent=True) or {}
    if not data.get("now"):
        return None, None
    now = parse_datetime(data["now"])
    if now is None:
        return None, api_error(E.VALIDATION_INVALID, "now must be an ISO-8601 datetime")
    return now, None


@sla_bp.route("", methods=["GET"])
def list_records():
    status = request.args.get("status")
    item_type = request.args.get("item_type")
    if status and status not in SLA_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(SLA_STATUSES)}")
    if item_type:
        err = _check_item_type(item_type)
        if err:
            return err
    limit = request.args.get("limit", 200, type=int)
    limit = max(1, min(limit, 1000))
    records = sla_tracker.list_sla_records(status=status, item_type=item_type, limit=limit)
    return jsonify({"records": records, "total": len(records)})


@sla_bp.route("/<item_type>/<int:item_id>", methods=["GET"])
def get_item_records(item_type, item_id):
    err = _check_item_type(item_type)
    if err:
        return err
    get_work_item(item_id, item_type)
    return jsonify({"item_type": item_type, "item_id": item_id,
                    "records": sla_tracker.get_item_sla(item_type, item_id)})


@sla_bp.route("/<item_type>/<int:item_id>/recompute", methods=["POST"])
def recompute_item(item_type, item_id):
    err = _check_item_type(item_type)
    if err:
        return err
    now, err = _clock_from_body()
    if err:
        return err
    get_work_item(item_id, item_type)
    records = sla_tracker.update_sla_tracking(item_type, item_id, now=now)
    return jsonify({"item_type": item_type, "item_id": item_id, "records": records})


@sla_bp.route("/recompute", methods=["POST"])
def recompute_all():
    now, err = _clock_from_body()
    if err:
        return err
    return jsonify(sla_tracker.recompute_all_sla(now=now))
