"""Locations and distance checks for completion verification."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_MAX_DISTANCE_M = 100.0


@dataclass(frozen=True)
class PlainText:
    text: str

    @property
    def label(self) -> str:
        return self.text

    def to_dict(self) -> dict:
        return {"kind": "text", "address": self.text}


@dataclass(frozen=True)
class Geocoded:
    lat: float
    lng: float
    address: str = ""

    @property
    def label(self) -> str:
        return self.address or f"{self.lat:.5f}, {self.lng:.5f}"

    def to_dict(self) -> dict:
        return {"kind": "geocoded", "lat": self.lat, "lng": self.lng, "address": self.address}


Location = Union[PlainText, Geocoded]


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    accuracy: Optional[float] = None


def resolve_location(address: Optional[str], lat: Optional[float] = None,
                     lng: Optional[float] = None) -> Optional[Location]:
    address = (address or "").strip()
    if lat is not None and lng is not None:
        return Geocoded(float(lat), float(lng), address)
    if address:
        return PlainText(address)
    return None


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    # rounding can push a just past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(a))


def verify_position(target: Optional[Location], position: Position,
                    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
                    now: Optional[datetime] = None) -> dict:
    """Build the verification block for a volunteer reporting ``position``.

    Without target coordinates the distance is unknown and the result is
    unverified.
    """
    distance = None
    if isinstance(target, Geocoded):
        distance = haversine_m(position.lat, position.lng, target.lat, target.lng)
    return {
        "location": {"lat": position.lat, "lng": position.lng, "accuracy": position.accuracy},
        "distance": distance,
        "timestamp": now or datetime.now(timezone.utc),
        "verified": distance is not None and distance <= max_distance_m,
    }
