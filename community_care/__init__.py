from __future__ import annotations

import logging
import os
import sqlite3

from flask import Flask, jsonify
from flask_login import current_user, login_required
from sqlalchemy import event
from sqlalchemy.engine import Engine

from .errors import register_error_handlers
from .extensions import change_feed, csrf, db, login_manager, migrate


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    if isinstance(dbapi_connection, sqlite3.Connection):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA synchronous=NORMAL")
        cur.execute("PRAGMA busy_timeout=30000")
        cur.close()


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object("config.Config")
    if overrides:
        app.config.update(overrides)

    os.makedirs(app.instance_path, exist_ok=True)
    logging.getLogger(__name__).setLevel(app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite:"):
        opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
        ca = dict(opts.get("connect_args", {}))
        ca.setdefault("check_same_thread", False)
        ca.setdefault("timeout", 30)
        opts["connect_args"] = ca
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    change_feed.init_app(app)

    from .auth.routes import LoginThrottle
    app.extensions["login_throttle"] = LoginThrottle(
        max_attempts=app.config.get("LOGIN_MAX_ATTEMPTS", 5),
        window=app.config.get("LOGIN_ATTEMPT_WINDOW", 300),
    )

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "unauthorized", "message": "Sign in required."}), 401

    register_error_handlers(app)

    from .models.user import User
    from .models.help_request import HelpRequest, RequestEvent, Rating
    from .models.message import Message
    from .models.notification import Notification

    from .auth.routes import auth_bp
    app.register_blueprint(auth_bp, url_prefix="/auth")

    from .requests.routes import requests_bp
    app.register_blueprint(requests_bp)

    from .messages.routes import messages_bp
    app.register_blueprint(messages_bp)

    from .notifications.routes import notifications_bp
    app.register_blueprint(notifications_bp)

    from .profiles.routes import profiles_bp
    app.register_blueprint(profiles_bp)

    from .analytics.routes import analytics_bp
    app.register_blueprint(analytics_bp)

    from .cli import (
        init_db_cmd,
        reset_db_cmd,
        purge_data_cmd,
        seed_demo_cmd,
        seed_bulk_cmd,
    )

    app.cli.add_command(init_db_cmd)
    app.cli.add_command(reset_db_cmd)
    app.cli.add_command(purge_data_cmd)
    app.cli.add_command(seed_demo_cmd)
    app.cli.add_command(seed_bulk_cmd)

    @app.get("/")
    def index():
        return jsonify({"name": "community-care", "status": "ok"})

    @app.get("/dashboard")
    @login_required
    def dashboard():
        from .lifecycle import CLAIMED, OPEN, PENDING_COMPLETION

        stats = {
            "openRequests": HelpRequest.query.filter_by(
                created_by_id=current_user.id, status=OPEN
            ).count(),
            "activeClaims": HelpRequest.query.filter(
                HelpRequest.claimed_by_id == current_user.id,
                HelpRequest.status.in_([CLAIMED, PENDING_COMPLETION]),
            ).count(),
            "awaitingMyVerification": HelpRequest.query.filter_by(
                created_by_id=current_user.id, status=PENDING_COMPLETION
            ).count(),
            "unreadNotifications": Notification.query.filter_by(
                user_id=current_user.id, read=False
            ).count(),
        }

        latest = (
            HelpRequest.query.filter_by(created_by_id=current_user.id)
            .order_by(HelpRequest.created_at.desc())
            .limit(5)
            .all()
        )

        return jsonify({
            "user": current_user.to_dict(private=True),
            "stats": stats,
            "latest": [r.to_dict() for r in latest],
        })

    @app.teardown_request
    def _teardown_request(_exc):
        try:
            if _exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    return app
