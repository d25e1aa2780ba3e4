from datetime import datetime, timezone
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from ..extensions import db, login_manager

USER_TYPES = ("resident", "volunteer", "both")

DEFAULT_NOTIFICATION_SETTINGS = {
    "email": {
        "newRequests": True,
        "responses": True,
        "statusUpdates": True,
        "weeklyDigest": False,
    },
    "push": {
        "newRequests": True,
        "responses": True,
        "statusUpdates": True,
        "achievements": True,
    },
    "frequency": "immediate",
    "radius": 10,
}


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    user_type = db.Column(db.String(20), nullable=False, default="both")

    bio = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(40), nullable=True)
    website = db.Column(db.String(255), nullable=True)
    skills = db.Column(db.JSON, nullable=False, default=list)
    languages = db.Column(db.JSON, nullable=False, default=list)
    notification_settings = db.Column(db.JSON, nullable=True)

    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def effective_notification_settings(self) -> dict:
        merged = {
            "email": dict(DEFAULT_NOTIFICATION_SETTINGS["email"]),
            "push": dict(DEFAULT_NOTIFICATION_SETTINGS["push"]),
            "frequency": DEFAULT_NOTIFICATION_SETTINGS["frequency"],
            "radius": DEFAULT_NOTIFICATION_SETTINGS["radius"],
        }
        stored = self.notification_settings or {}
        for channel in ("email", "push"):
            merged[channel].update(stored.get(channel) or {})
        for key in ("frequency", "radius"):
            if key in stored:
                merged[key] = stored[key]
        return merged

    def to_dict(self, private: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "userType": self.user_type,
            "bio": self.bio,
            "location": self.location,
            "website": self.website,
            "skills": list(self.skills or []),
            "languages": list(self.languages or []),
            "joinedAt": self.created_at.isoformat() if self.created_at else None,
        }
        if private:
            data["email"] = self.email
            data["phone"] = self.phone
        return data


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))
