import os
import sys

import pytest
from flask import g

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from community_care import create_app
from community_care.extensions import db
from community_care.geo import Geocoded
from community_care.lifecycle import Actor, ServiceContext
from community_care.models.user import User
from community_care.requests import service

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret-key",
    "WTF_CSRF_ENABLED": False,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SERVER_NAME": "localhost",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
}

# Sofia city centre; the sample request is geocoded here.
HOME_LAT = 42.6977
HOME_LNG = 23.3219


def _assert_memory_db(uri: str):
    if uri != "sqlite:///:memory:":
        raise RuntimeError(
            f"Refusing to run tests on non-memory DB: {uri!r}. "
            "This guard protects your real database."
        )


@pytest.fixture(scope="function")
def app():
    os.environ.pop("DATABASE_URL", None)

    flask_app = create_app(TEST_CONFIG)
    _assert_memory_db(flask_app.config["SQLALCHEMY_DATABASE_URI"])

    # client requests share the fixture's app context, and with it `g`
    @flask_app.teardown_request
    def _forget_login(_exc):
        g.pop("_login_user", None)

    with flask_app.app_context():
        db.create_all()
        yield flask_app
        _assert_memory_db(flask_app.config["SQLALCHEMY_DATABASE_URI"])
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    def _make_user(email: str, name: str, user_type="both", password="secret123"):
        u = User(email=email, name=name, user_type=user_type)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        return u.id
    return _make_user


@pytest.fixture()
def login_as(client, app):
    def _login_as(user_id: int):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
    return _login_as


@pytest.fixture()
def ctx_for(app):
    """ServiceContext for a user id, for driving services directly."""
    def _ctx_for(user_id: int) -> ServiceContext:
        return ServiceContext(actor=Actor.from_user(db.session.get(User, user_id)))
    return _ctx_for


@pytest.fixture()
def sample_data(app, make_user, ctx_for):
    """Ids only: the request session is removed after every client call."""
    resident = make_user("resident@example.com", "Rita Resident", user_type="resident")
    volunteer = make_user("volunteer@example.com", "Victor Volunteer", user_type="volunteer")
    stranger = make_user("stranger@example.com", "Stan Stranger", user_type="volunteer")

    req = service.create_request(
        ctx_for(resident),
        title="Groceries for the week",
        description="Need someone to pick up a bag of groceries from the corner shop.",
        category="Groceries & Shopping",
        urgency="high",
        location=Geocoded(HOME_LAT, HOME_LNG, "1 Vitosha Blvd"),
    )

    return {
        "resident": resident,
        "volunteer": volunteer,
        "stranger": stranger,
        "request": req.id,
    }
