"""Request state machine and the authorization rules derived from it."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import InvalidTransition

OPEN = "open"
CLAIMED = "claimed"
PENDING_COMPLETION = "pending_completion"
COMPLETED = "completed"

STATUSES = (OPEN, CLAIMED, PENDING_COMPLETION, COMPLETED)

EV_CREATED = "created"
EV_CLAIMED = "claimed"
EV_MARKED_COMPLETE = "marked_complete"
EV_VERIFIED = "verified_complete"
EV_REJECTED = "completion_rejected"

EVENT_TYPES = (EV_CREATED, EV_CLAIMED, EV_MARKED_COMPLETE, EV_VERIFIED, EV_REJECTED)

# (from_status, event) -> to_status
TRANSITIONS = {
    (OPEN, EV_CLAIMED): CLAIMED,
    (CLAIMED, EV_MARKED_COMPLETE): PENDING_COMPLETION,
    (PENDING_COMPLETION, EV_VERIFIED): COMPLETED,
    (PENDING_COMPLETION, EV_REJECTED): CLAIMED,
}

MESSAGING_STATUSES = frozenset({CLAIMED, PENDING_COMPLETION})

URGENCIES = ("low", "medium", "high")
URGENCY_WEIGHT = {"high": 3, "medium": 2, "low": 1}

CATEGORIES = (
    "General Help",
    "Groceries & Shopping",
    "Medical Assistance",
    "Transportation",
    "Housework & Cleaning",
    "Pet Care",
    "Childcare",
    "Technology Help",
    "Yard Work",
    "Moving & Delivery",
    "Companionship",
    "Other",
)


@dataclass(frozen=True)
class Actor:
    id: int
    email: str
    name: str = ""

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return self.email.split("@", 1)[0] if self.email else str(self.id)

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, email=user.email, name=(user.name or "").strip())


@dataclass(frozen=True)
class Settings:
    max_distance_m: float = 100.0
    require_location_verification: bool = False

    @classmethod
    def from_config(cls, config) -> "Settings":
        return cls(
            max_distance_m=float(config.get("VERIFICATION_MAX_DISTANCE_M", 100.0)),
            require_location_verification=bool(
                config.get("REQUIRE_LOCATION_VERIFICATION", False)
            ),
        )


@dataclass(frozen=True)
class ServiceContext:
    """Who is calling and under which deployment settings."""

    actor: Actor
    settings: Settings = Settings()


def next_status(current: Optional[str], event: str) -> str:
    if current is None:
        if event == EV_CREATED:
            return OPEN
        raise InvalidTransition(f"history must start with '{EV_CREATED}', got '{event}'")
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransition(f"cannot apply '{event}' to a request in '{current}'") from None


def replay(events: Iterable[str]) -> Optional[str]:
    status = None
    for event in events:
        status = next_status(status, event)
    return status


def can_message(req, sender_id: int, receiver_id: int) -> bool:
    if req.status not in MESSAGING_STATUSES or req.claimed_by_id is None:
        return False
    return {sender_id, receiver_id} == {req.created_by_id, req.claimed_by_id}


def can_rate(req, actor_id: int) -> bool:
    return (
        req.status == COMPLETED
        and req.created_by_id == actor_id
        and req.rating is None
    )
