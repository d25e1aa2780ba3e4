from community_care.extensions import db
from community_care.models.user import User


def test_register_logs_user_in(client):
    rv = client.post("/auth/register", json={
        "name": "New Neighbour",
        "email": "New@Example.com",
        "password": "secret123",
        "user_type": "volunteer",
    })
    assert rv.status_code == 201
    body = rv.get_json()
    assert body["email"] == "new@example.com"
    assert body["userType"] == "volunteer"

    rv = client.get("/auth/me")
    assert rv.status_code == 200
    assert rv.get_json()["name"] == "New Neighbour"


def test_register_rejects_duplicate_email(client, make_user):
    make_user("taken@example.com", "Taken")
    rv = client.post("/auth/register", json={
        "name": "Someone",
        "email": "taken@example.com",
        "password": "secret123",
    })
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "validation_error"
    assert "email" in rv.get_json()["details"]


def test_register_requires_letter_and_digit_password(client):
    rv = client.post("/auth/register", json={
        "name": "Weak",
        "email": "weak@example.com",
        "password": "onlyletters",
    })
    assert rv.status_code == 422
    assert "password" in rv.get_json()["details"]
    assert User.query.filter_by(email="weak@example.com").first() is None


def test_login_and_logout(client, make_user):
    make_user("rita@example.com", "Rita")
    rv = client.post("/auth/login", json={"email": "rita@example.com", "password": "secret123"})
    assert rv.status_code == 200
    assert client.get("/auth/me").status_code == 200

    assert client.post("/auth/logout").status_code == 200
    rv = client.get("/auth/me")
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "unauthorized"


def test_login_bad_password(client, make_user):
    make_user("rita@example.com", "Rita")
    rv = client.post("/auth/login", json={"email": "rita@example.com", "password": "nope1234"})
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "invalid_credentials"


def test_login_is_throttled_after_repeated_failures(client, app, make_user):
    make_user("rita@example.com", "Rita")
    limit = app.config["LOGIN_MAX_ATTEMPTS"]
    for _ in range(limit):
        rv = client.post("/auth/login", json={"email": "rita@example.com", "password": "bad12345"})
        assert rv.status_code == 401

    rv = client.post("/auth/login", json={"email": "rita@example.com", "password": "secret123"})
    assert rv.status_code == 429
    assert rv.get_json()["error"] == "too_many_attempts"


def test_dashboard_counts(client, login_as, sample_data):
    login_as(sample_data["resident"])
    rv = client.get("/dashboard")
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["user"]["email"] == "resident@example.com"
    assert body["stats"]["openRequests"] == 1
    assert body["stats"]["awaitingMyVerification"] == 0
    assert [r["id"] for r in body["latest"]] == [sample_data["request"]]


def test_dashboard_requires_login(client):
    assert client.get("/dashboard").status_code == 401


def test_password_is_hashed(app, make_user):
    uid = make_user("hash@example.com", "Hash")
    user = db.session.get(User, uid)
    assert user.password_hash != "secret123"
    assert user.check_password("secret123")


def test_switching_users_between_requests(client, login_as, sample_data):
    login_as(sample_data["resident"])
    assert client.get("/auth/me").get_json()["id"] == sample_data["resident"]

    login_as(sample_data["volunteer"])
    assert client.get("/auth/me").get_json()["id"] == sample_data["volunteer"]
    rv = client.post(f"/requests/{sample_data['request']}/claim")
    assert rv.status_code == 200
    assert rv.get_json()["claimedBy"]["id"] == sample_data["volunteer"]
