"""
Subscription and payment state machines.

    incomplete -> active -> {past_due <-> active} -> canceled

`unpaid` is reachable from active/past_due and can recover to active.
`canceled` is terminal. A payment that succeeded stays succeeded.
"""

import logging
from typing import Optional

from investorpedia.models import PaymentStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


class InvalidStateTransition(Exception):
    pass


_S = SubscriptionStatus

SUBSCRIPTION_TRANSITIONS = {
    _S.INCOMPLETE: {_S.INCOMPLETE, _S.ACTIVE, _S.PAST_DUE, _S.UNPAID, _S.CANCELED},
    _S.ACTIVE: {_S.ACTIVE, _S.PAST_DUE, _S.UNPAID, _S.CANCELED},
    _S.PAST_DUE: {_S.PAST_DUE, _S.ACTIVE, _S.UNPAID, _S.CANCELED},
    _S.UNPAID: {_S.UNPAID, _S.ACTIVE, _S.PAST_DUE, _S.CANCELED},
    _S.CANCELED: set(),
}

# Stripe statuses outside our model, folded into the closest local status
PROCESSOR_STATUS_ALIASES = {
    "trialing": _S.ACTIVE,
    "incomplete_expired": _S.CANCELED,
}

_P = PaymentStatus

PAYMENT_TRANSITIONS = {
    _P.PENDING: {_P.PENDING, _P.SUCCEEDED, _P.FAILED},
    # a failed intent can still succeed once the customer retries with a new method
    _P.FAILED: {_P.FAILED, _P.SUCCEEDED},
    _P.SUCCEEDED: set(),
}


def normalize_subscription_status(processor_status: str) -> Optional[SubscriptionStatus]:
    """Map a Stripe subscription status onto the local status set, or None if unsupported."""
    if processor_status in PROCESSOR_STATUS_ALIASES:
        return PROCESSOR_STATUS_ALIASES[processor_status]
    try:
        return SubscriptionStatus(processor_status)
    except ValueError:
        logger.warning("Unsupported subscription status", extra={"processor_status": processor_status})
        return None


def is_terminal(status) -> bool:
    return not SUBSCRIPTION_TRANSITIONS[SubscriptionStatus(status)]


def check_subscription_transition(current, target) -> None:
    current, target = SubscriptionStatus(current), SubscriptionStatus(target)
    if target not in SUBSCRIPTION_TRANSITIONS[current]:
        raise InvalidStateTransition(f"Subscription cannot move from {current.value} to {target.value}")


def check_payment_transition(current, target) -> None:
    current, target = PaymentStatus(current), PaymentStatus(target)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidStateTransition(f"Payment cannot move from {current.value} to {target.value}")


def is_stale(event_created: int, last_event_at: Optional[int]) -> bool:
    """
    An event is stale when it is strictly older than the last applied one.
    Equal timestamps are applied in delivery order since Stripe timestamps
    have one-second resolution.
    """
    return last_event_at is not None and event_created < last_event_at
