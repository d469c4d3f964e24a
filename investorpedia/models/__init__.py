from investorpedia.models.user import User
from investorpedia.models.plan import Plan
from investorpedia.models.subscription import (
    CustomerLink,
    Subscription,
    SubscriptionStatus,
    OPEN_STATUSES,
)
from investorpedia.models.payment import Payment, PaymentStatus
from investorpedia.models.stripe_event import StripeEvent, EventStatus
from investorpedia.models.portfolio import Portfolio, PortfolioHistory

__all__ = [
    "User",
    "Plan",
    "CustomerLink",
    "Subscription",
    "SubscriptionStatus",
    "OPEN_STATUSES",
    "Payment",
    "PaymentStatus",
    "StripeEvent",
    "EventStatus",
    "Portfolio",
    "PortfolioHistory",
]
