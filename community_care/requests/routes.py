from datetime import date, datetime

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from wtforms import FloatField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional

from ..context import current_context
from ..errors import ValidationError
from ..forms import ApiForm, json_payload, require_valid
from ..geo import Position, resolve_location
from ..lifecycle import CATEGORIES, URGENCIES
from . import service

requests_bp = Blueprint("requests", __name__)

PER_PAGE = 20


class RequestForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(min=5, max=200)])
    description = TextAreaField(
        "Description", validators=[DataRequired(), Length(min=20, max=5000)]
    )
    category = SelectField("Category", choices=list(CATEGORIES), validators=[DataRequired()])
    urgency = SelectField("Urgency", choices=list(URGENCIES), default="medium")
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    lat = FloatField("Latitude", validators=[Optional(), NumberRange(min=-90, max=90)])
    lng = FloatField("Longitude", validators=[Optional(), NumberRange(min=-180, max=180)])
    contact_info = StringField("Contact info", validators=[Optional(), Length(max=255)])
    estimated_time = StringField("Estimated time", validators=[Optional(), Length(max=120)])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if (self.lat.data is None) != (self.lng.data is None):
            self.lat.errors.append("Latitude and longitude go together.")
            return False
        if self.location is None:
            self.address.errors.append("Location is required.")
            return False
        return True

    @property
    def location(self):
        return resolve_location(self.address.data, self.lat.data, self.lng.data)


class CompleteForm(ApiForm):
    lat = FloatField("Latitude", validators=[Optional(), NumberRange(min=-90, max=90)])
    lng = FloatField("Longitude", validators=[Optional(), NumberRange(min=-180, max=180)])
    accuracy = FloatField("Accuracy", validators=[Optional(), NumberRange(min=0)])

    def position(self):
        if self.lat.data is None or self.lng.data is None:
            return None
        return Position(self.lat.data, self.lng.data, self.accuracy.data)


class RatingForm(ApiForm):
    score = IntegerField("Score", validators=[InputRequired(), NumberRange(min=1, max=5)])
    review = TextAreaField("Review", validators=[Optional(), Length(max=2000)])


def _date_arg(name: str) -> date | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("Invalid filter.", {name: ["Use YYYY-MM-DD."]}) from None


@requests_bp.post("/requests")
@login_required
def create_request():
    form = require_valid(RequestForm())
    req = service.create_request(
        current_context(),
        title=form.title.data,
        description=form.description.data,
        category=form.category.data,
        urgency=form.urgency.data,
        location=form.location,
        contact_info=form.contact_info.data,
        estimated_time=form.estimated_time.data,
    )
    return jsonify(req.to_dict(with_history=True)), 201


@requests_bp.get("/requests")
@login_required
def list_requests():
    mine = request.args.get("mine")
    q = service.search_requests(
        text=request.args.get("q"),
        category=request.args.get("category"),
        urgency=request.args.get("urgency"),
        status=request.args.get("status"),
        date_from=_date_arg("date_from"),
        date_to=_date_arg("date_to"),
        sort=request.args.get("sort", "newest"),
        created_by_id=current_user.id if mine == "created" else None,
        claimed_by_id=current_user.id if mine == "claimed" else None,
    )

    page = max(request.args.get("page", 1, type=int), 1)
    fetched = q.offset((page - 1) * PER_PAGE).limit(PER_PAGE + 1).all()
    rows = fetched[:PER_PAGE]
    return jsonify({
        "items": [r.to_dict() for r in rows],
        "page": page,
        "hasNext": len(fetched) > PER_PAGE,
        "hasPrev": page > 1,
    })


@requests_bp.get("/requests/<int:req_id>")
@login_required
def request_detail(req_id):
    return jsonify(service.get_request(req_id).to_dict(with_history=True))


@requests_bp.get("/requests/<int:req_id>/history")
@login_required
def request_history(req_id):
    req = service.get_request(req_id)
    return jsonify([e.to_dict() for e in req.events])


@requests_bp.post("/requests/<int:req_id>/claim")
@login_required
def claim_request(req_id):
    req = service.claim(current_context(), req_id)
    return jsonify(req.to_dict(with_history=True))


@requests_bp.post("/requests/<int:req_id>/complete")
@login_required
def complete_request(req_id):
    form = require_valid(CompleteForm())
    req = service.mark_complete(current_context(), req_id, form.position())
    return jsonify(req.to_dict(with_history=True))


@requests_bp.post("/requests/<int:req_id>/verify")
@login_required
def verify_request(req_id):
    approved = json_payload().get("approved")
    if not isinstance(approved, bool):
        raise ValidationError("Invalid form.", {"approved": ["Must be true or false."]})
    req = service.verify_completion(current_context(), req_id, approved)
    return jsonify(req.to_dict(with_history=True))


@requests_bp.post("/requests/<int:req_id>/rating")
@login_required
def rate_request(req_id):
    score = json_payload().get("score")
    if score is not None and type(score) is not int:
        raise ValidationError("Invalid form.", {"score": ["Score must be a whole number."]})
    form = require_valid(RatingForm())
    rating = service.rate(current_context(), req_id, form.score.data, form.review.data)
    return jsonify(rating.to_dict()), 201
