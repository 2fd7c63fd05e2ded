"""
Notification Blueprint.

Endpoints:
    GET   /api/v1/notifications?recipient_id=&unread_only=&limit=
    PATCH /api/v1/notifications/<id>/read
"""

import logging

from flask import Blueprint, jsonify, request

from assignment_engine.blueprints import register_service_error_handlers
from assignment_engine.models import db
from assignment_engine.models.notification import Notification
from assignment_engine.services.notification import NotificationService
from assignment_engine.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")
register_service_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    recipient_id = request.args.get("recipient_id", type=int)
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit = max(1, min(request.args.get("limit", 50, type=int), 500))
    items = NotificationService.list_for(recipient_id, unread_only=unread_only, limit=limit)
    return jsonify({"items": [n.to_dict() for n in items], "total": len(items)})


@notification_bp.route("/<int:notification_id>/read", methods=["PATCH"])
def mark_read(notification_id):
    notif, err = get_or_404(Notification, notification_id, "Notification")
    if err:
        return err
    notif.mark_read()
    db.session.commit()
    return jsonify(notif.to_dict())
