from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import Field
from wtforms.widgets import TextInput

from .errors import ValidationError


def json_payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Expected a JSON object.")
    return payload


class ApiForm(FlaskForm):
    """FlaskForm fed from a JSON body; ``null`` members count as absent."""

    def __init__(self, *args, **kwargs):
        if "formdata" not in kwargs and request.is_json:
            payload = json_payload()
            kwargs["formdata"] = ImmutableMultiDict(
                {k: v for k, v in payload.items() if v is not None}
            )
        super().__init__(*args, **kwargs)


class TagListField(Field):
    """A set of short strings sent as a JSON list (or repeated form keys)."""

    widget = TextInput()

    def __init__(self, label=None, validators=None, max_items=50, **kwargs):
        super().__init__(label, validators, **kwargs)
        self.max_items = max_items

    def _value(self):
        return ", ".join(self.data or [])

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        items = []
        for raw in valuelist:
            item = str(raw).strip()
            if item and item not in items:
                items.append(item)
        if len(items) > self.max_items:
            raise ValueError(f"At most {self.max_items} entries.")
        self.data = items


def require_valid(form: FlaskForm) -> FlaskForm:
    if not form.validate_on_submit():
        raise ValidationError("Invalid form.", form.errors)
    return form
