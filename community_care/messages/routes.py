from flask import Blueprint, jsonify
from flask_login import login_required

from ..context import current_context
from ..forms import json_payload
from . import service

messages_bp = Blueprint("messages", __name__)


@messages_bp.get("/requests/<int:req_id>/messages")
@login_required
def thread(req_id):
    rows = service.list_thread(current_context(), req_id)
    return jsonify([m.to_dict() for m in rows])


@messages_bp.post("/requests/<int:req_id>/messages")
@login_required
def send(req_id):
    # participant checks come before the body is looked at
    body = json_payload().get("message")
    msg = service.send_message(current_context(), req_id, body)
    return jsonify(msg.to_dict()), 201


@messages_bp.post("/messages/<int:message_id>/read")
@login_required
def mark_read(message_id):
    msg = service.mark_message_read(current_context(), message_id)
    return jsonify(msg.to_dict())
