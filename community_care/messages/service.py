from __future__ import annotations

import logging

from ..errors import Forbidden, NotFound, ValidationError
from ..extensions import change_feed, db
from ..lifecycle import ServiceContext, can_message
from ..models.message import Message
from ..notifications.service import notify
from ..requests.service import get_request

logger = logging.getLogger(__name__)

MAX_BODY = 2000


def _other_party(req, user_id: int) -> tuple[int, str]:
    if user_id == req.created_by_id:
        return req.claimed_by_id, req.claimed_by_email
    if user_id == req.claimed_by_id:
        return req.created_by_id, req.created_by_email
    raise Forbidden("Only the requester and the volunteer can use this thread.")


def send_message(ctx: ServiceContext, request_id: int, body) -> Message:
    req = get_request(request_id)
    receiver_id, receiver_email = _other_party(req, ctx.actor.id)
    if not can_message(req, ctx.actor.id, receiver_id):
        raise Forbidden("Messaging is only open while the request is in progress.")

    body = body.strip() if isinstance(body, str) else ""
    if not body:
        raise ValidationError("Empty message.", {"message": ["Message can't be empty."]})
    if len(body) > MAX_BODY:
        raise ValidationError(
            "Message too long.", {"message": [f"At most {MAX_BODY} characters."]}
        )

    msg = Message(
        request_id=req.id,
        sender_id=ctx.actor.id,
        sender_email=ctx.actor.email,
        receiver_id=receiver_id,
        receiver_email=receiver_email,
        body=body,
    )
    db.session.add(msg)
    db.session.commit()
    logger.debug("Message %s sent on request %s", msg.id, req.id)

    change_feed.publish("messages", msg.id, msg.to_dict())
    notify(
        receiver_id,
        "new_message",
        "New message",
        f"{ctx.actor.label} wrote about \"{req.title}\".",
        request_id=req.id,
    )
    return msg


def list_thread(ctx: ServiceContext, request_id: int) -> list[Message]:
    req = get_request(request_id)
    _other_party(req, ctx.actor.id)
    return (
        Message.query.filter_by(request_id=req.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def mark_message_read(ctx: ServiceContext, message_id: int) -> Message:
    msg = db.session.get(Message, message_id)
    if msg is None:
        raise NotFound("Message not found.")
    if msg.receiver_id != ctx.actor.id:
        raise Forbidden("Only the receiver can mark a message as read.")
    if not msg.read:
        msg.read = True
        db.session.commit()
        change_feed.publish("messages", msg.id, msg.to_dict())
    return msg
