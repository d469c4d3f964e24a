from enum import Enum

from sqlalchemy import CheckConstraint

from investorpedia.extensions import db
from investorpedia.models.user import utcnow


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    stripe_payment_intent_id = db.Column(db.String(255), unique=True, nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    amount = db.Column(db.BigInteger, nullable=False)  # minor units
    currency = db.Column(db.String(3), default="usd", nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value)
    failure_reason = db.Column(db.Text, nullable=True)
    last_event_at = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed')",
            name="valid_payment_status",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "paymentIntentId": self.stripe_payment_intent_id,
            "subscriptionId": self.stripe_subscription_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "failureReason": self.failure_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
