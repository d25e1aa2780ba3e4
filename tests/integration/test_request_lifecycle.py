from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from community_care.extensions import db
from community_care.lifecycle import replay
from community_care.models.help_request import HelpRequest, Rating, RequestEvent

HOME_LAT = 42.6977
HOME_LNG = 23.3219

NEW_REQUEST = {
    "title": "Walk my dog",
    "description": "Max needs a 30 minute walk around the park this afternoon.",
    "category": "Pet Care",
    "urgency": "medium",
    "address": "5 Park Lane",
    "lat": HOME_LAT,
    "lng": HOME_LNG,
}


def _events(req_id):
    rows = RequestEvent.query.filter_by(request_id=req_id).order_by(RequestEvent.seq).all()
    return [e.type for e in rows]


def test_create_request(client, login_as, sample_data):
    login_as(sample_data["resident"])
    rv = client.post("/requests", json=NEW_REQUEST)
    assert rv.status_code == 201
    body = rv.get_json()
    assert body["status"] == "open"
    assert body["claimedBy"] is None
    assert body["location"] == {
        "kind": "geocoded", "lat": HOME_LAT, "lng": HOME_LNG, "address": "5 Park Lane",
    }
    assert body["createdBy"]["email"] == "resident@example.com"
    assert [e["type"] for e in body["history"]] == ["created"]


def test_create_request_with_plain_address(client, login_as, sample_data):
    login_as(sample_data["resident"])
    payload = {k: v for k, v in NEW_REQUEST.items() if k not in ("lat", "lng")}
    rv = client.post("/requests", json=payload)
    assert rv.status_code == 201
    assert rv.get_json()["location"] == {"kind": "text", "address": "5 Park Lane"}


def test_create_request_validation(client, login_as, sample_data):
    login_as(sample_data["resident"])
    rv = client.post("/requests", json={**NEW_REQUEST, "title": "Hi", "category": "Knitting"})
    assert rv.status_code == 422
    details = rv.get_json()["details"]
    assert "title" in details
    assert "category" in details

    rv = client.post("/requests", json={**NEW_REQUEST, "address": None, "lat": None, "lng": None})
    assert rv.status_code == 422
    assert "address" in rv.get_json()["details"]

    rv = client.post("/requests", json={**NEW_REQUEST, "lng": None})
    assert rv.status_code == 422
    assert "lat" in rv.get_json()["details"]


def _step(body, seen):
    """The history grew by one entry and replays to the reported status."""
    history = body["history"]
    assert len(history) == seen + 1
    assert replay([e["type"] for e in history]) == body["status"]
    return len(history)


def test_full_lifecycle(client, login_as, sample_data):
    rid = sample_data["request"]
    seen = 1

    login_as(sample_data["volunteer"])
    rv = client.post(f"/requests/{rid}/claim")
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["status"] == "claimed"
    assert body["claimedBy"]["id"] == sample_data["volunteer"]
    assert body["claimedAt"] is not None
    seen = _step(body, seen)

    login_as(sample_data["stranger"])
    rv = client.post(f"/requests/{rid}/claim")
    assert rv.status_code == 409
    assert rv.get_json()["error"] == "already_claimed"

    # ~40 m north of the request
    login_as(sample_data["volunteer"])
    rv = client.post(f"/requests/{rid}/complete", json={
        "lat": HOME_LAT + 0.00036, "lng": HOME_LNG, "accuracy": 12,
    })
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["status"] == "pending_completion"
    verification = body["verification"]
    assert verification["verified"] is True
    assert 35 < verification["distance"] < 45
    assert verification["location"]["accuracy"] == 12
    seen = _step(body, seen)

    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/verify", json={"approved": True})
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["status"] == "completed"
    assert body["verifiedBy"] == sample_data["resident"]
    seen = _step(body, seen)

    rv = client.post(f"/requests/{rid}/rating", json={"score": 5, "review": "Lovely!"})
    assert rv.status_code == 201
    assert rv.get_json()["ratedUserId"] == sample_data["volunteer"]

    rv = client.post(f"/requests/{rid}/rating", json={"score": 4})
    assert rv.status_code == 409
    assert Rating.query.filter_by(request_id=rid).count() == 1

    assert _events(rid) == ["created", "claimed", "marked_complete", "verified_complete"]

    rv = client.get(f"/requests/{rid}/history")
    assert [e["seq"] for e in rv.get_json()] == [1, 2, 3, 4]


def test_far_away_completion_is_recorded_unverified(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")

    rv = client.post(f"/requests/{rid}/complete", json={"lat": HOME_LAT + 0.01, "lng": HOME_LNG})
    assert rv.status_code == 200
    verification = rv.get_json()["verification"]
    assert verification["verified"] is False
    assert verification["distance"] > 1000


def test_completion_without_position_has_no_verification(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")

    rv = client.post(f"/requests/{rid}/complete", json={})
    assert rv.status_code == 200
    assert rv.get_json()["verification"] is None


def test_required_verification_blocks_far_completion(client, app, login_as, sample_data):
    app.config["REQUIRE_LOCATION_VERIFICATION"] = True
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")

    rv = client.post(f"/requests/{rid}/complete", json={"lat": HOME_LAT + 0.01, "lng": HOME_LNG})
    assert rv.status_code == 422
    assert db.session.get(HelpRequest, rid).status == "claimed"

    rv = client.post(f"/requests/{rid}/complete", json={"lat": HOME_LAT, "lng": HOME_LNG})
    assert rv.status_code == 200


def test_rejected_completion_returns_to_same_volunteer(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    seen = _step(client.post(f"/requests/{rid}/claim").get_json(), 1)
    rv = client.post(f"/requests/{rid}/complete", json={"lat": HOME_LAT, "lng": HOME_LNG})
    seen = _step(rv.get_json(), seen)

    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/verify", json={"approved": False})
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["status"] == "claimed"
    assert body["claimedBy"]["id"] == sample_data["volunteer"]
    assert body["completedBy"] is None
    assert body["verification"] is None
    seen = _step(body, seen)

    login_as(sample_data["volunteer"])
    rv = client.post(f"/requests/{rid}/complete", json={})
    assert rv.status_code == 200
    seen = _step(rv.get_json(), seen)

    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/verify", json={"approved": True})
    assert rv.get_json()["status"] == "completed"
    _step(rv.get_json(), seen)
    assert _events(rid) == [
        "created", "claimed", "marked_complete", "completion_rejected",
        "marked_complete", "verified_complete",
    ]


def test_creator_cannot_claim_own_request(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/claim")
    assert rv.status_code == 403
    assert db.session.get(HelpRequest, rid).status == "open"


def test_only_claimant_can_complete(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")

    login_as(sample_data["stranger"])
    rv = client.post(f"/requests/{rid}/complete", json={})
    assert rv.status_code == 403


def test_complete_open_request_is_invalid(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    rv = client.post(f"/requests/{rid}/complete", json={})
    assert rv.status_code == 409
    assert rv.get_json()["error"] == "invalid_transition"


def test_only_creator_can_verify(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")
    client.post(f"/requests/{rid}/complete", json={})

    rv = client.post(f"/requests/{rid}/verify", json={"approved": True})
    assert rv.status_code == 403
    assert db.session.get(HelpRequest, rid).status == "pending_completion"


def test_verify_requires_decision(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/verify", json={})
    assert rv.status_code == 422


def test_verify_decision_must_be_boolean(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")
    client.post(f"/requests/{rid}/complete", json={})

    login_as(sample_data["resident"])
    for decision in ("no", "False", 0, None):
        rv = client.post(f"/requests/{rid}/verify", json={"approved": decision})
        assert rv.status_code == 422, decision
        assert "approved" in rv.get_json()["details"]
    assert db.session.get(HelpRequest, rid).status == "pending_completion"
    assert _events(rid) == ["created", "claimed", "marked_complete"]


def test_rating_rules(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["resident"])
    rv = client.post(f"/requests/{rid}/rating", json={"score": 5})
    assert rv.status_code == 409

    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")
    client.post(f"/requests/{rid}/complete", json={})
    login_as(sample_data["resident"])
    client.post(f"/requests/{rid}/verify", json={"approved": True})

    rv = client.post(f"/requests/{rid}/rating", json={"score": 6})
    assert rv.status_code == 422

    login_as(sample_data["volunteer"])
    rv = client.post(f"/requests/{rid}/rating", json={"score": 5})
    assert rv.status_code == 403


def test_rating_score_must_be_whole_number(client, login_as, sample_data):
    rid = sample_data["request"]
    login_as(sample_data["volunteer"])
    client.post(f"/requests/{rid}/claim")
    client.post(f"/requests/{rid}/complete", json={})
    login_as(sample_data["resident"])
    client.post(f"/requests/{rid}/verify", json={"approved": True})

    for score in (4.9, True, "5"):
        rv = client.post(f"/requests/{rid}/rating", json={"score": score})
        assert rv.status_code == 422, score
    assert Rating.query.filter_by(request_id=rid).count() == 0

    rv = client.post(f"/requests/{rid}/rating", json={"score": 4})
    assert rv.status_code == 201
    assert rv.get_json()["score"] == 4


def test_unknown_request(client, login_as, sample_data):
    login_as(sample_data["volunteer"])
    rv = client.post("/requests/9999/claim")
    assert rv.status_code == 404
    assert rv.get_json()["error"] == "not_found"
    assert client.get("/requests/9999").status_code == 404


def test_detail_includes_history(client, login_as, sample_data):
    login_as(sample_data["stranger"])
    rv = client.get(f"/requests/{sample_data['request']}")
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["title"] == "Groceries for the week"
    assert body["history"][0]["actorLabel"] == "Rita Resident"


def test_history_rejects_unknown_event_type(app, sample_data):
    db.session.add(RequestEvent(
        request_id=sample_data["request"],
        seq=2,
        type="reopened",
        actor_id=sample_data["resident"],
        actor_label="Rita Resident",
        created_at=datetime.now(timezone.utc),
    ))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()
    assert _events(sample_data["request"]) == ["created"]
