from datetime import datetime, timezone
from sqlalchemy import CheckConstraint
from ..extensions import db


class Message(db.Model):
    __tablename__ = "messages"

    id = db.Column(db.Integer, primary_key=True)

    request_id = db.Column(
        db.Integer, db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    sender_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sender_email = db.Column(db.String(255), nullable=False)
    receiver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    receiver_email = db.Column(db.String(255), nullable=False)

    body = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint("sender_id <> receiver_id", name="ck_message_self"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requestId": self.request_id,
            "senderId": self.sender_id,
            "senderEmail": self.sender_email,
            "receiverId": self.receiver_id,
            "receiverEmail": self.receiver_email,
            "message": self.body,
            "read": self.read,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
