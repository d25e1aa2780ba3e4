from flask import Blueprint, jsonify, request
from flask_login import login_required

from ..context import current_context
from . import service

notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.get("/notifications")
@login_required
def inbox():
    unread_only = request.args.get("unread") in ("1", "true")
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
    rows = service.list_for(current_context(), unread_only=unread_only, limit=limit)
    return jsonify([n.to_dict() for n in rows])


@notifications_bp.get("/notifications/unread-count")
@login_required
def unread_count():
    return jsonify({"unread": service.unread_count(current_context())})


@notifications_bp.post("/notifications/<int:notification_id>/read")
@login_required
def mark_read(notification_id):
    n = service.mark_read(current_context(), notification_id)
    return jsonify(n.to_dict())


@notifications_bp.post("/notifications/read-all")
@login_required
def mark_all_read():
    return jsonify({"updated": service.mark_all_read(current_context())})
