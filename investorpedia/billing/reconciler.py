from contextlib import nullcontext
from enum import Enum
import logging

from flask import current_app
from investorpedia.billing.events import (
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownEvent,
    decode_event,
)
from investorpedia.billing.state_machine import (
    InvalidStateTransition,
    check_payment_transition,
    check_subscription_transition,
    is_stale,
    is_terminal,
    normalize_subscription_status,
)
from investorpedia.errors import ValidationError
from investorpedia.extensions import db
from investorpedia.models import (
    CustomerLink,
    EventStatus,
    Payment,
    PaymentStatus,
    Plan,
    StripeEvent,
    Subscription,
    SubscriptionStatus,
    User,
)
from investorpedia.models.user import utcnow
from investorpedia.utils.locks import resource_lock
from investorpedia.utils.queries import select_for_update

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"
    ORPHANED = "orphaned"
    IGNORED = "ignored"


class Reconciler:
    """
    Applies verified Stripe events to local subscription and payment state.

    This class is the ONLY writer of subscription status and payment status
    after creation. Every mutation runs under the per-resource lock for the
    event's target and inside a single transaction.
    """

    def apply(self, event) -> ApplyOutcome:
        """Apply one decoded event and commit."""
        with self._lock(event):
            try:
                outcome = self._dispatch(event)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        self._log_outcome(event, outcome)
        return outcome

    def apply_stored(self, event_id: str):
        """
        Apply a queued row from the event log and mark it in the same transaction.

        Returns the outcome, or None when the row is missing or already handled.
        """
        record = db.session.get(StripeEvent, event_id)
        if record is None:
            logger.warning("Queued event not found", extra={"event_id": event_id})
            return None

        try:
            event = decode_event(record.payload)
        except ValidationError as exc:
            record.status = EventStatus.REJECTED.value
            record.last_error = exc.message
            db.session.commit()
            logger.error("Stored event payload no longer decodes", extra={"event_id": event_id})
            return None

        with self._lock(event):
            try:
                record = select_for_update(StripeEvent, id=event_id)
                if record is None or record.status != EventStatus.QUEUED.value:
                    db.session.rollback()
                    return None

                outcome = self._dispatch(event)

                record.attempts += 1
                record.status = outcome.value
                record.applied_at = utcnow()
                record.last_error = None
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                self._record_failure(event_id, exc)
                raise

        self._log_outcome(event, outcome)
        return outcome

    # ==================== DISPATCH ====================

    def _dispatch(self, event) -> ApplyOutcome:
        if isinstance(event, PaymentIntentSucceeded):
            return self._apply_payment(event, PaymentStatus.SUCCEEDED)
        if isinstance(event, PaymentIntentFailed):
            return self._apply_payment(event, PaymentStatus.FAILED)
        if isinstance(event, SubscriptionDeleted):
            return self._apply_subscription(event, forced_status=SubscriptionStatus.CANCELED)
        if isinstance(event, (SubscriptionCreated, SubscriptionUpdated)):
            return self._apply_subscription(event)
        if isinstance(event, UnknownEvent):
            return ApplyOutcome.IGNORED
        raise TypeError(f"Unsupported event variant: {type(event).__name__}")

    @staticmethod
    def _lock(event):
        if event.lock_key is None:
            return nullcontext()
        return resource_lock(event.lock_key)

    # ==================== PAYMENTS ====================

    def _apply_payment(self, event, target: PaymentStatus) -> ApplyOutcome:
        intent = event.payment_intent
        payment = select_for_update(Payment, stripe_payment_intent_id=intent.id)

        if payment is None:
            user_id = self._resolve_user(intent.metadata.get("user_id"), intent.customer)
            if user_id is None:
                return self._orphan(event, f"no user for payment intent {intent.id}")

            # Creation was missed (crash after the processor call, or an off-app charge)
            payment = Payment(
                stripe_payment_intent_id=intent.id,
                user_id=user_id,
                stripe_subscription_id=intent.metadata.get("subscription_id"),
                amount=intent.amount,
                currency=intent.currency,
                status=PaymentStatus.PENDING.value,
            )
            db.session.add(payment)
            logger.info("Created missing payment record", extra={"payment_intent_id": intent.id})

        if is_stale(event.created, payment.last_event_at):
            return ApplyOutcome.STALE

        try:
            check_payment_transition(payment.status, target)
        except InvalidStateTransition as exc:
            logger.info(str(exc), extra={"event_id": event.id, "payment_intent_id": intent.id})
            return ApplyOutcome.STALE

        payment.status = target.value
        payment.amount = intent.amount
        payment.currency = intent.currency
        payment.last_event_at = event.created
        payment.failure_reason = intent.failure_message if target == PaymentStatus.FAILED else None
        return ApplyOutcome.APPLIED

    # ==================== SUBSCRIPTIONS ====================

    def _apply_subscription(self, event, forced_status=None) -> ApplyOutcome:
        remote = event.subscription
        subscription = select_for_update(Subscription, stripe_subscription_id=remote.id)

        if subscription is None:
            user_id = self._resolve_user(remote.metadata.get("user_id"), remote.customer)
            if user_id is None:
                return self._orphan(event, f"no user for subscription {remote.id}")

            subscription = Subscription(
                stripe_subscription_id=remote.id,
                user_id=user_id,
                plan_id=self._known_plan(remote.metadata.get("plan_id")),
                status=SubscriptionStatus.INCOMPLETE.value,
            )
            db.session.add(subscription)
            logger.info("Created missing subscription record", extra={"subscription_id": remote.id})

        # cancellation is final whatever the timestamp says
        if is_terminal(subscription.status):
            return ApplyOutcome.STALE

        if forced_status is None:
            if is_stale(event.created, subscription.last_event_at):
                return ApplyOutcome.STALE
            if event.created == subscription.last_event_at and self._superseded_tie(event, subscription):
                return ApplyOutcome.STALE
            target = normalize_subscription_status(remote.status)
            if target is None:
                return ApplyOutcome.IGNORED
        else:
            target = forced_status

        try:
            check_subscription_transition(subscription.status, target)
        except InvalidStateTransition as exc:
            logger.info(str(exc), extra={"event_id": event.id, "subscription_id": remote.id})
            return ApplyOutcome.STALE

        subscription.status = target.value
        subscription.last_event_at = max(event.created, subscription.last_event_at or 0)
        plan_id = self._known_plan(remote.metadata.get("plan_id"))
        if plan_id:
            subscription.plan_id = plan_id
        if target == SubscriptionStatus.CANCELED:
            subscription.canceled_at = utcnow()

        self._sync_user_plan(subscription)
        return ApplyOutcome.APPLIED

    @staticmethod
    def _superseded_tie(event, subscription) -> bool:
        """
        Same-second events carry no order. When Stripe reports the status the
        change started from and it is not the current local status, the event
        describes a transition that the applied one already moved past.
        """
        previous = event.previous_status
        if previous is None:
            return False
        previous = normalize_subscription_status(previous)
        if previous is None or previous.value == subscription.status:
            return False
        logger.info(
            "Same-second event superseded",
            extra={"event_id": event.id, "subscription_id": subscription.stripe_subscription_id},
        )
        return True

    @staticmethod
    def _sync_user_plan(subscription):
        user = db.session.get(User, subscription.user_id)
        if user is None or not subscription.plan_id:
            return

        if subscription.status == SubscriptionStatus.ACTIVE.value:
            user.current_plan = subscription.plan_id
        elif subscription.status == SubscriptionStatus.CANCELED.value and user.current_plan == subscription.plan_id:
            user.current_plan = None

    # ==================== RESOLUTION ====================

    @staticmethod
    def _resolve_user(user_id, stripe_customer_id):
        if user_id and db.session.get(User, user_id) is not None:
            return user_id

        if stripe_customer_id:
            link = CustomerLink.query.filter_by(stripe_customer_id=stripe_customer_id).first()
            if link is not None:
                return link.user_id

        return None

    @staticmethod
    def _known_plan(plan_id):
        if plan_id and db.session.get(Plan, plan_id) is not None:
            return plan_id
        return None

    @staticmethod
    def _orphan(event, reason) -> ApplyOutcome:
        logger.warning(
            "Orphan event dropped",
            extra={"event_id": event.id, "event_type": event.type, "reason": reason},
        )
        return ApplyOutcome.ORPHANED

    # ==================== BOOKKEEPING ====================

    @staticmethod
    def _record_failure(event_id, exc):
        max_attempts = current_app.config.get("EVENT_MAX_ATTEMPTS", 8)
        try:
            record = db.session.get(StripeEvent, event_id)
            if record is None:
                return
            record.attempts += 1
            record.last_error = f"{type(exc).__name__}: {exc}"[:2000]
            if record.attempts >= max_attempts:
                record.status = EventStatus.REJECTED.value
                logger.error(
                    "Event gave up after repeated failures",
                    extra={"event_id": event_id, "attempts": record.attempts},
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Could not record event failure", extra={"event_id": event_id})

    @staticmethod
    def _log_outcome(event, outcome):
        logger.info(
            "Event reconciled",
            extra={"event_id": event.id, "event_type": event.type, "outcome": outcome.value},
        )
