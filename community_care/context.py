from flask import current_app
from flask_login import current_user

from .lifecycle import Actor, ServiceContext, Settings


def current_context() -> ServiceContext:
    """Service context for the logged-in user of the current request."""
    return ServiceContext(
        actor=Actor.from_user(current_user),
        settings=Settings.from_config(current_app.config),
    )
