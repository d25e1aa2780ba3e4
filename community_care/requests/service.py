"""Request lifecycle: create, claim, complete, verify and rate.

Every operation takes a ``ServiceContext`` naming the acting user. Only
``claim`` needs an atomic guarantee and is written as a single conditional
UPDATE; the other transitions are guarded by the row's version counter.
Notifications go out after the transition is committed and never undo it.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import AlreadyClaimed, Forbidden, InvalidTransition, NotFound, ValidationError
from ..extensions import change_feed, db
from ..geo import Location, Position, verify_position
from ..lifecycle import (
    CATEGORIES,
    CLAIMED,
    COMPLETED,
    EV_CLAIMED,
    EV_CREATED,
    EV_MARKED_COMPLETE,
    EV_REJECTED,
    EV_VERIFIED,
    OPEN,
    PENDING_COMPLETION,
    STATUSES,
    URGENCIES,
    URGENCY_WEIGHT,
    ServiceContext,
)
from ..models.help_request import HelpRequest, Rating
from ..notifications.service import notify

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("newest", "oldest", "urgency-high", "urgency-low", "title")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _publish(req: HelpRequest) -> None:
    change_feed.publish("requests", req.id, req.to_dict())


def _commit(req: HelpRequest) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise InvalidTransition(
            f"Request {req.id} was modified by someone else; reload and retry."
        ) from None


def get_request(request_id: int) -> HelpRequest:
    req = db.session.get(HelpRequest, request_id)
    if req is None:
        raise NotFound(f"Request {request_id} not found.")
    return req


def create_request(
    ctx: ServiceContext,
    *,
    title: str,
    description: str,
    category: str,
    location: Location | None,
    urgency: str = "medium",
    contact_info: str | None = None,
    estimated_time: str | None = None,
) -> HelpRequest:
    errors = {}
    title = (title or "").strip()
    description = (description or "").strip()
    if not title:
        errors["title"] = ["Title is required."]
    if not description:
        errors["description"] = ["Description is required."]
    if category not in CATEGORIES:
        errors["category"] = ["Unknown category."]
    if urgency not in URGENCIES:
        errors["urgency"] = ["Urgency must be low, medium or high."]
    if location is None:
        errors["location"] = ["Location is required."]
    if errors:
        raise ValidationError("Invalid request.", errors)

    now = _now()
    req = HelpRequest(
        title=title,
        description=description,
        category=category,
        urgency=urgency,
        contact_info=(contact_info or "").strip() or None,
        estimated_time=(estimated_time or "").strip() or None,
        status=OPEN,
        created_by_id=ctx.actor.id,
        created_by_email=ctx.actor.email,
        created_at=now,
    )
    req.set_location(location)
    req.append_event(EV_CREATED, ctx.actor, at=now)
    db.session.add(req)
    db.session.commit()

    logger.info("Request %s created by user %s", req.id, ctx.actor.id)
    _publish(req)
    return req


def claim(ctx: ServiceContext, request_id: int) -> HelpRequest:
    actor = ctx.actor
    now = _now()

    result = db.session.execute(
        update(HelpRequest)
        .where(
            HelpRequest.id == request_id,
            HelpRequest.status == OPEN,
            HelpRequest.created_by_id != actor.id,
        )
        .values(
            status=CLAIMED,
            claimed_by_id=actor.id,
            claimed_by_email=actor.email,
            claimed_at=now,
            updated_at=now,
            version=HelpRequest.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        req = get_request(request_id)
        if req.created_by_id == actor.id:
            raise Forbidden("You can't claim your own request.")
        raise AlreadyClaimed(f"Request {request_id} is no longer open.")

    req = db.session.get(HelpRequest, request_id, populate_existing=True)
    req.append_event(EV_CLAIMED, actor, at=now)
    db.session.commit()

    logger.info("Request %s claimed by user %s", req.id, actor.id)
    _publish(req)
    notify(
        req.created_by_id,
        "request_claimed",
        "Your request was claimed",
        f"{actor.label} volunteered to help with \"{req.title}\".",
        request_id=req.id,
    )
    return req


def mark_complete(ctx: ServiceContext, request_id: int,
                  position: Position | None = None) -> HelpRequest:
    actor = ctx.actor
    req = get_request(request_id)
    if req.status != CLAIMED:
        raise InvalidTransition(f"Request {req.id} is {req.status}, not claimed.")
    if req.claimed_by_id != actor.id:
        raise Forbidden("Only the volunteer who claimed this request can complete it.")

    verification = None
    if position is not None:
        verification = verify_position(
            req.location, position, ctx.settings.max_distance_m
        )
    if ctx.settings.require_location_verification and not (
        verification and verification["verified"]
    ):
        raise ValidationError(
            "You must be at the request location to mark it complete.",
            {"location": ["Location could not be verified."]},
        )

    now = _now()
    req.status = PENDING_COMPLETION
    req.completed_by_id = actor.id
    req.completed_by_email = actor.email
    req.completed_at = now
    req.set_verification(verification)
    req.append_event(EV_MARKED_COMPLETE, actor, at=now)
    _commit(req)

    logger.info(
        "Request %s marked complete by user %s (verified=%s)",
        req.id, actor.id, bool(verification and verification["verified"]),
    )
    _publish(req)
    notify(
        req.created_by_id,
        "request_completed",
        "Please confirm completion",
        f"{actor.label} marked \"{req.title}\" as completed.",
        request_id=req.id,
    )
    return req


def verify_completion(ctx: ServiceContext, request_id: int, approved: bool) -> HelpRequest:
    actor = ctx.actor
    req = get_request(request_id)
    if req.status != PENDING_COMPLETION:
        raise InvalidTransition(f"Request {req.id} is {req.status}, not pending completion.")
    if req.created_by_id != actor.id:
        raise Forbidden("Only the creator can verify completion.")

    volunteer_id = req.completed_by_id or req.claimed_by_id
    now = _now()
    if approved:
        req.status = COMPLETED
        req.verified_by_id = actor.id
        req.verified_at = now
        req.append_event(EV_VERIFIED, actor, at=now)
    else:
        # claim stays with the same volunteer
        req.status = CLAIMED
        req.completed_by_id = None
        req.completed_by_email = None
        req.completed_at = None
        req.set_verification(None)
        req.append_event(EV_REJECTED, actor, at=now)
    _commit(req)

    logger.info("Request %s completion %s by user %s",
                req.id, "approved" if approved else "rejected", actor.id)
    _publish(req)
    if approved:
        notify(volunteer_id, "completion_verified", "Completion confirmed",
               f"Thanks! \"{req.title}\" is now completed.", request_id=req.id)
    else:
        notify(volunteer_id, "completion_rejected", "Completion not confirmed",
               f"The requester did not confirm \"{req.title}\" yet.", request_id=req.id)
    return req


def rate(ctx: ServiceContext, request_id: int, score: int, review: str | None = None) -> Rating:
    actor = ctx.actor
    req = get_request(request_id)
    if req.created_by_id != actor.id:
        raise Forbidden("Only the creator can rate this request.")
    if req.status != COMPLETED:
        raise InvalidTransition("Only completed requests can be rated.")
    if req.rating is not None:
        raise InvalidTransition("This request has already been rated.")
    if type(score) is not int or not 1 <= score <= 5:
        raise ValidationError("Invalid rating.", {"score": ["Score must be between 1 and 5."]})

    rated_id = req.completed_by_id or req.claimed_by_id
    rated_email = req.completed_by_email or req.claimed_by_email
    rating = Rating(
        request=req,
        score=score,
        review=(review or "").strip() or None,
        rated_user_id=rated_id,
        rated_user_email=rated_email,
        rated_by_id=actor.id,
    )
    db.session.add(rating)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidTransition("This request has already been rated.") from None

    logger.info("Request %s rated %s by user %s", req.id, score, actor.id)
    _publish(req)
    return rating


def search_requests(
    text: str | None = None,
    category: str | None = None,
    urgency: str | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    sort: str = "newest",
    created_by_id: int | None = None,
    claimed_by_id: int | None = None,
):
    """Query for the request list; ``None`` or ``'all'`` disables a filter."""
    q = HelpRequest.query

    text = (text or "").strip().lower()
    if text:
        q = q.filter(
            or_(
                func.lower(HelpRequest.title).contains(text, autoescape=True),
                func.lower(HelpRequest.description).contains(text, autoescape=True),
                func.lower(func.coalesce(HelpRequest.location_text, "")).contains(
                    text, autoescape=True
                ),
            )
        )
    if category and category != "all":
        q = q.filter(HelpRequest.category == category)
    if urgency and urgency != "all":
        if urgency not in URGENCIES:
            raise ValidationError("Invalid filter.", {"urgency": ["Unknown urgency."]})
        q = q.filter(HelpRequest.urgency == urgency)
    if status and status != "all":
        if status not in STATUSES:
            raise ValidationError("Invalid filter.", {"status": ["Unknown status."]})
        q = q.filter(HelpRequest.status == status)
    if date_from:
        q = q.filter(HelpRequest.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(
            HelpRequest.created_at < datetime.combine(date_to + timedelta(days=1), time.min)
        )
    if created_by_id is not None:
        q = q.filter(HelpRequest.created_by_id == created_by_id)
    if claimed_by_id is not None:
        q = q.filter(HelpRequest.claimed_by_id == claimed_by_id)

    weight = case(URGENCY_WEIGHT, value=HelpRequest.urgency, else_=0)
    if sort == "newest":
        q = q.order_by(HelpRequest.created_at.desc(), HelpRequest.id.desc())
    elif sort == "oldest":
        q = q.order_by(HelpRequest.created_at.asc(), HelpRequest.id.asc())
    elif sort == "urgency-high":
        q = q.order_by(weight.desc(), HelpRequest.created_at.desc())
    elif sort == "urgency-low":
        q = q.order_by(weight.asc(), HelpRequest.created_at.desc())
    elif sort == "title":
        q = q.order_by(func.lower(HelpRequest.title).asc(), HelpRequest.id.asc())
    else:
        raise ValidationError("Invalid sort.", {"sort": [f"Use one of {', '.join(SORT_OPTIONS)}."]})
    return q
