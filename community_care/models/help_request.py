from datetime import datetime, timezone
from sqlalchemy import CheckConstraint, UniqueConstraint
from ..extensions import db
from ..geo import Geocoded, Location, resolve_location
from ..lifecycle import EVENT_TYPES, STATUSES, URGENCIES


def _iso(dt):
    return dt.isoformat() if dt else None


def _one_of(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class HelpRequest(db.Model):
    __tablename__ = "help_requests"

    id = db.Column(db.Integer, primary_key=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(64), nullable=False, index=True)
    urgency = db.Column(db.String(10), nullable=False, default="medium", index=True)

    location_text = db.Column(db.String(255), nullable=True)
    location_lat = db.Column(db.Float, nullable=True)
    location_lng = db.Column(db.Float, nullable=True)

    contact_info = db.Column(db.String(255), nullable=True)
    estimated_time = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    version = db.Column(db.Integer, nullable=False)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    created_by_email = db.Column(db.String(255), nullable=False)

    claimed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True
    )
    claimed_by_email = db.Column(db.String(255), nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)

    completed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_by_email = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    verified_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)

    # location proof reported with marked_complete
    verification_lat = db.Column(db.Float, nullable=True)
    verification_lng = db.Column(db.Float, nullable=True)
    verification_accuracy = db.Column(db.Float, nullable=True)
    verification_distance_m = db.Column(db.Float, nullable=True)
    verification_at = db.Column(db.DateTime, nullable=True)
    verification_verified = db.Column(db.Boolean, nullable=True)

    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(_one_of("status", STATUSES), name="ck_request_status"),
        CheckConstraint(_one_of("urgency", URGENCIES), name="ck_request_urgency"),
        CheckConstraint(
            "(status = 'open' AND claimed_by_id IS NULL)"
            " OR (status <> 'open' AND claimed_by_id IS NOT NULL)",
            name="ck_request_claimant",
        ),
        CheckConstraint(
            "verified_by_id IS NULL OR status = 'completed'", name="ck_request_verifier"
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    creator = db.relationship("User", foreign_keys=[created_by_id])
    claimant = db.relationship("User", foreign_keys=[claimed_by_id])

    events = db.relationship(
        "RequestEvent",
        back_populates="request",
        order_by="RequestEvent.seq",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    rating = db.relationship(
        "Rating", back_populates="request", uselist=False, lazy="selectin"
    )

    @property
    def location(self) -> Location | None:
        return resolve_location(self.location_text, self.location_lat, self.location_lng)

    def set_location(self, loc: Location) -> None:
        if isinstance(loc, Geocoded):
            self.location_lat, self.location_lng = loc.lat, loc.lng
            self.location_text = loc.address or None
        else:
            self.location_lat = self.location_lng = None
            self.location_text = loc.text

    def append_event(self, type_: str, actor, at=None) -> "RequestEvent":
        seq = self.events[-1].seq + 1 if self.events else 1
        ev = RequestEvent(
            seq=seq,
            type=type_,
            actor_id=actor.id,
            actor_label=actor.label,
            created_at=at or datetime.now(timezone.utc),
        )
        self.events.append(ev)
        return ev

    @property
    def verification(self) -> dict | None:
        if self.verification_at is None:
            return None
        return {
            "location": {
                "lat": self.verification_lat,
                "lng": self.verification_lng,
                "accuracy": self.verification_accuracy,
            },
            "distance": self.verification_distance_m,
            "timestamp": _iso(self.verification_at),
            "verified": bool(self.verification_verified),
        }

    def set_verification(self, block: dict | None) -> None:
        block = block or {}
        loc = block.get("location") or {}
        self.verification_lat = loc.get("lat")
        self.verification_lng = loc.get("lng")
        self.verification_accuracy = loc.get("accuracy")
        self.verification_distance_m = block.get("distance")
        self.verification_at = block.get("timestamp")
        self.verification_verified = block.get("verified") if block else None

    def to_dict(self, with_history: bool = False) -> dict:
        loc = self.location
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "urgency": self.urgency,
            "location": loc.to_dict() if loc else None,
            "contactInfo": self.contact_info,
            "estimatedTime": self.estimated_time,
            "status": self.status,
            "createdBy": {"id": self.created_by_id, "email": self.created_by_email},
            "claimedBy": (
                {"id": self.claimed_by_id, "email": self.claimed_by_email}
                if self.claimed_by_id is not None else None
            ),
            "claimedAt": _iso(self.claimed_at),
            "completedBy": (
                {"id": self.completed_by_id, "email": self.completed_by_email}
                if self.completed_by_id is not None else None
            ),
            "completedAt": _iso(self.completed_at),
            "verifiedBy": self.verified_by_id,
            "verifiedAt": _iso(self.verified_at),
            "verification": self.verification,
            "rating": self.rating.to_dict() if self.rating else None,
            "createdAt": _iso(self.created_at),
        }
        if with_history:
            data["history"] = [e.to_dict() for e in self.events]
        return data


class RequestEvent(db.Model):
    """One entry of a request's history. Rows are only ever inserted."""

    __tablename__ = "request_events"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    seq = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(32), nullable=False)
    actor_id = db.Column(db.Integer, nullable=False)
    actor_label = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_event_request_seq"),
        CheckConstraint(_one_of("type", EVENT_TYPES), name="ck_event_type"),
    )

    request = db.relationship("HelpRequest", back_populates="events")

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "type": self.type,
            "actorId": self.actor_id,
            "actorLabel": self.actor_label,
            "timestamp": _iso(self.created_at),
        }


class Rating(db.Model):
    __tablename__ = "ratings"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False, unique=True
    )
    score = db.Column(db.Integer, nullable=False)
    review = db.Column(db.Text, nullable=True)
    rated_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    rated_user_email = db.Column(db.String(255), nullable=False)
    rated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    rated_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint("score BETWEEN 1 AND 5", name="ck_rating_score"),
    )

    request = db.relationship("HelpRequest", back_populates="rating")

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "review": self.review or "",
            "ratedUserId": self.rated_user_id,
            "ratedUserEmail": self.rated_user_email,
            "ratedAt": _iso(self.rated_at),
        }
