from datetime import datetime, timezone
from ..extensions import db

NOTIFICATION_TYPES = (
    "request_claimed",
    "request_completed",
    "completion_verified",
    "completion_rejected",
    "new_message",
)


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    request_id = db.Column(
        db.Integer, db.ForeignKey("help_requests.id", ondelete="SET NULL"),
        nullable=True
    )

    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "requestId": self.request_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "read": self.read,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
