from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required
from wtforms import SelectField, StringField, TextAreaField
from wtforms.fields import URLField
from wtforms.validators import Length, Optional, Regexp, URL

from ..analytics.stats import RequestRecord, compute_stats
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..forms import ApiForm, TagListField, json_payload, require_valid
from ..models.help_request import HelpRequest
from ..models.user import DEFAULT_NOTIFICATION_SETTINGS, USER_TYPES, User

profiles_bp = Blueprint("profiles", __name__)

FREQUENCIES = ("immediate", "hourly", "daily", "weekly")
RADII = (1, 5, 10, 25, 50)


class ProfileForm(ApiForm):
    name = StringField("Display name", validators=[Optional(), Length(min=2, max=120)])
    bio = TextAreaField("Bio", validators=[Optional(), Length(max=2000)])
    location = StringField("Location", validators=[Optional(), Length(max=255)])
    phone = StringField(
        "Phone",
        validators=[
            Optional(),
            Regexp(r"^\+?[\d\s-]{10,}$", message="Please enter a valid phone number."),
        ],
    )
    website = URLField("Website", validators=[Optional(), URL(message="Enter a valid URL")])
    skills = TagListField("Skills")
    languages = TagListField("Languages")
    user_type = SelectField("User type", choices=list(USER_TYPES), validators=[Optional()])


def _user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found.")
    return user


def _clean_settings(payload: dict) -> dict:
    errors = {}
    settings = {}
    for channel in ("email", "push"):
        given = payload.get(channel)
        if given is None:
            continue
        allowed = DEFAULT_NOTIFICATION_SETTINGS[channel]
        if not isinstance(given, dict):
            errors[channel] = ["Expected an object of toggles."]
            continue
        unknown = sorted(set(given) - set(allowed))
        if unknown:
            errors[channel] = [f"Unknown settings: {', '.join(unknown)}."]
        elif not all(isinstance(v, bool) for v in given.values()):
            errors[channel] = ["Toggles must be true or false."]
        else:
            settings[channel] = dict(given)
    if "frequency" in payload:
        if payload["frequency"] not in FREQUENCIES:
            errors["frequency"] = [f"Use one of {', '.join(FREQUENCIES)}."]
        else:
            settings["frequency"] = payload["frequency"]
    if "radius" in payload:
        if payload["radius"] not in RADII:
            errors["radius"] = [f"Use one of {', '.join(map(str, RADII))}."]
        else:
            settings["radius"] = payload["radius"]
    if errors:
        raise ValidationError("Invalid notification settings.", errors)
    return settings


@profiles_bp.get("/users/<int:user_id>")
@login_required
def public_profile(user_id):
    user = _user_or_404(user_id)
    return jsonify(user.to_dict(private=user.id == current_user.id))


@profiles_bp.get("/users/<int:user_id>/stats")
@login_required
def user_stats(user_id):
    user = _user_or_404(user_id)
    authored = HelpRequest.query.filter_by(created_by_id=user.id).all()
    claimed = HelpRequest.query.filter_by(claimed_by_id=user.id).all()
    report = compute_stats(
        [RequestRecord.from_model(r) for r in authored],
        [RequestRecord.from_model(r) for r in claimed],
        thresholds=current_app.config.get("ACHIEVEMENT_THRESHOLDS"),
    )
    return jsonify(report.to_dict())


@profiles_bp.patch("/profile")
@login_required
def update_profile():
    payload = json_payload()
    user = current_user
    form = require_valid(ProfileForm(user_type=user.user_type))

    if "name" in payload and form.name.data:
        user.name = form.name.data.strip()
    for field in ("bio", "location", "phone", "website"):
        if field in payload:
            setattr(user, field, (getattr(form, field).data or "").strip() or None)
    for field in ("skills", "languages"):
        if field in payload:
            setattr(user, field, getattr(form, field).data or [])
    if payload.get("user_type"):
        user.user_type = form.user_type.data

    db.session.commit()
    return jsonify(user.to_dict(private=True))


@profiles_bp.get("/profile/notification-settings")
@login_required
def get_notification_settings():
    return jsonify(current_user.effective_notification_settings())


@profiles_bp.put("/profile/notification-settings")
@login_required
def put_notification_settings():
    settings = _clean_settings(json_payload())
    stored = dict(current_user.notification_settings or {})
    for key, value in settings.items():
        if isinstance(value, dict):
            stored[key] = {**(stored.get(key) or {}), **value}
        else:
            stored[key] = value
    current_user.notification_settings = stored
    db.session.commit()
    return jsonify(current_user.effective_notification_settings())
