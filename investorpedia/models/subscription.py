# subscription.py
from enum import Enum

from sqlalchemy import CheckConstraint, Index

from investorpedia.extensions import db
from investorpedia.models.user import utcnow


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


# Statuses for which the user still "has" a subscription and a new one must not be created
OPEN_STATUSES = (
    SubscriptionStatus.INCOMPLETE.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.UNPAID.value,
)


class CustomerLink(db.Model):
    """
    One-to-one mapping between a user and a Stripe customer.
    Written once by the subscription intent manager, never updated.
    """

    __tablename__ = "customer_links"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"),
                        unique=True, nullable=False)
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    plan_id = db.Column(db.String(50), db.ForeignKey("plans.id"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.INCOMPLETE.value)
    latest_payment_intent_id = db.Column(db.String(255), nullable=True)

    # Processor `created` timestamp (unix seconds) of the last applied event
    last_event_at = db.Column(db.BigInteger, nullable=True)

    canceled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('incomplete', 'active', 'past_due', 'canceled', 'unpaid')",
            name="valid_subscription_status",
        ),
        Index("idx_subscription_user_status", "user_id", "status"),
    )

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self):
        return {
            "subscriptionId": self.stripe_subscription_id,
            "planId": self.plan_id,
            "status": self.status,
            "canceledAt": self.canceled_at.isoformat() if self.canceled_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} {self.status}>"
