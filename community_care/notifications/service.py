from __future__ import annotations

import logging

from ..errors import Forbidden, NotFound
from ..extensions import change_feed, db
from ..lifecycle import ServiceContext
from ..models.notification import Notification

logger = logging.getLogger(__name__)


def notify(user_id: int, type_: str, title: str, message: str,
           request_id: int | None = None) -> Notification | None:
    """Create a notification in its own transaction.

    Called after the triggering change is committed; a failure here is
    logged and swallowed so the caller's result stands.
    """
    try:
        n = Notification(
            user_id=user_id,
            request_id=request_id,
            type=type_,
            title=title,
            message=message,
        )
        db.session.add(n)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning(
            "Notification %s for user %s was not delivered", type_, user_id, exc_info=True
        )
        return None
    change_feed.publish("notifications", n.id, n.to_dict())
    return n


def list_for(ctx: ServiceContext, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = Notification.query.filter_by(user_id=ctx.actor.id)
    if unread_only:
        q = q.filter_by(read=False)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(ctx: ServiceContext) -> int:
    return Notification.query.filter_by(user_id=ctx.actor.id, read=False).count()


def mark_read(ctx: ServiceContext, notification_id: int) -> Notification:
    n = db.session.get(Notification, notification_id)
    if n is None:
        raise NotFound("Notification not found.")
    if n.user_id != ctx.actor.id:
        raise Forbidden("Not your notification.")
    if not n.read:
        n.read = True
        db.session.commit()
        change_feed.publish("notifications", n.id, n.to_dict())
    return n


def mark_all_read(ctx: ServiceContext) -> int:
    rows = Notification.query.filter_by(user_id=ctx.actor.id, read=False).all()
    for n in rows:
        n.read = True
    db.session.commit()
    for n in rows:
        change_feed.publish("notifications", n.id, n.to_dict())
    return len(rows)
