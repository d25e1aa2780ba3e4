import logging
import threading
import time

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from wtforms import PasswordField, SelectField, StringField
from wtforms.fields import EmailField
from wtforms.validators import DataRequired, Email, Length, Regexp

from ..errors import CareError, ValidationError
from ..extensions import db
from ..forms import ApiForm, require_valid
from ..models.user import USER_TYPES, User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


class TooManyAttempts(CareError):
    status_code = 429
    code = "too_many_attempts"


class LoginThrottle:
    """Sliding-window limit on sign-in attempts per key.

    Keys whose attempts have all aged out are dropped once per window.
    """

    def __init__(self, max_attempts: int = 5, window: float = 300.0, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock
        self._attempts: dict[str, list[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Record an attempt; False once the key is over its limit."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            recent = [t for t in self._attempts.get(key, []) if now - t < self.window]
            if len(recent) >= self.max_attempts:
                self._attempts[key] = recent
                return False
            recent.append(now)
            self._attempts[key] = recent
            return True

    def _sweep(self, now: float) -> None:
        stale = [k for k, times in self._attempts.items()
                 if not times or now - times[-1] >= self.window]
        for key in stale:
            del self._attempts[key]
        self._last_sweep = now

    def clear(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


class RegisterForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(), Length(min=2, max=120)])
    email = EmailField("Email", validators=[DataRequired(), Email()])
    password = PasswordField(
        "Password",
        validators=[
            DataRequired(),
            Length(min=8),
            Regexp(
                r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d@$!%*#?&]{8,}$",
                message="Password must contain at least one letter and one number.",
            ),
        ],
    )
    user_type = SelectField("I am", choices=[(t, t) for t in USER_TYPES], default="both")


class LoginForm(ApiForm):
    email = EmailField("Email", validators=[DataRequired(), Email()])
    password = PasswordField("Password", validators=[DataRequired()])


def _throttle() -> LoginThrottle:
    return current_app.extensions["login_throttle"]


@auth_bp.get("/csrf")
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.post("/register")
def register():
    form = require_valid(RegisterForm())
    email = form.email.data.lower()
    if User.query.filter_by(email=email).first():
        raise ValidationError(
            "Email is already registered.", {"email": ["This email is already registered."]}
        )

    user = User(
        email=email,
        name=form.name.data.strip(),
        user_type=form.user_type.data,
    )
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()

    login_user(user)
    logger.info("User %s registered", user.id)
    return jsonify(user.to_dict(private=True)), 201


@auth_bp.post("/login")
def login():
    form = require_valid(LoginForm())
    email = form.email.data.lower()
    if not _throttle().hit(email):
        raise TooManyAttempts("Too many failed attempts. Please try again later.")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(form.password.data):
        logger.info("Rejected sign-in for %s", email)
        return jsonify({"error": "invalid_credentials", "message": "Invalid email or password."}), 401

    _throttle().clear(email)
    login_user(user)
    return jsonify(user.to_dict(private=True))


@auth_bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(current_user.to_dict(private=True))
