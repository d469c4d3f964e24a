"""
Subscription intent manager.

Turns "user U wants plan P" into exactly one processor subscription. Repeat
calls (double clicks, client retries, concurrent tabs) return the open
subscription that already exists instead of creating another one.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from investorpedia.errors import NotFoundError, ValidationError
from investorpedia.extensions import db
from investorpedia.models import (
    CustomerLink,
    OPEN_STATUSES,
    Payment,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionStatus,
    User,
)
from investorpedia.services.stripe_gateway import StripeGateway, latest_payment_intent
from investorpedia.utils.locks import payment_lock_key, resource_lock, subscription_lock_key, user_lock_key
from investorpedia.utils.queries import select_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionIntent:
    subscription_id: str
    client_secret: Optional[str]

    def to_dict(self):
        return {"subscriptionId": self.subscription_id, "clientSecret": self.client_secret}


class SubscriptionIntentManager:
    """
    Creates or returns a user's pending subscription.

    Subscription status is never advanced here; the record is persisted as
    `incomplete` and only the reconciler moves it afterwards.
    """

    def __init__(self, gateway: Optional[StripeGateway] = None):
        self.gateway = gateway or StripeGateway()

    def create_or_get_subscription(self, user_id: str, plan_id: str) -> SubscriptionIntent:
        """
        Raises:
            ValidationError: plan id missing or user has no email on file
            NotFoundError: unknown user or plan
            UpstreamError: the processor call failed; nothing was persisted
                for the failed step
            LockTimeout: another request for this user is still in flight
        """
        if not plan_id:
            raise ValidationError("Plan ID is required")

        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        plan = db.session.get(Plan, plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")

        with resource_lock(user_lock_key(user.id)):
            existing = self._open_subscription(user.id)
            if existing is not None:
                logger.info(
                    "Returning existing open subscription",
                    extra={"user_id": user.id, "subscription_id": existing.stripe_subscription_id},
                )
                return self._existing_intent(existing)

            if not user.email:
                raise ValidationError("No user email on file")

            customer_id = self._ensure_customer(user)
            return self._create_subscription(user, plan, customer_id)

    # ==================== EXISTING ====================

    @staticmethod
    def _open_subscription(user_id):
        stmt = (
            select(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status.in_(OPEN_STATUSES))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return db.session.execute(
            stmt, execution_options={"populate_existing": True}
        ).scalar_one_or_none()

    def _existing_intent(self, subscription) -> SubscriptionIntent:
        remote = self.gateway.retrieve_subscription(subscription.stripe_subscription_id)
        intent = latest_payment_intent(remote)

        if intent is not None and intent.id != subscription.latest_payment_intent_id:
            stripe_id = subscription.stripe_subscription_id
            with self._record_locks(stripe_id, intent):
                record = select_for_update(Subscription, stripe_subscription_id=stripe_id)
                record.latest_payment_intent_id = intent.id
                self._ensure_payment(record.user_id, stripe_id, intent)
                db.session.commit()

        return SubscriptionIntent(
            subscription.stripe_subscription_id,
            intent.client_secret if intent is not None else None,
        )

    # ==================== CREATION ====================

    def _ensure_customer(self, user) -> str:
        link = CustomerLink.query.filter_by(user_id=user.id).first()
        if link is not None:
            return link.stripe_customer_id

        customer_id = self.gateway.create_customer(user, idempotency_key=f"customer:{user.id}")

        db.session.add(CustomerLink(user_id=user.id, stripe_customer_id=customer_id))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            link = CustomerLink.query.filter_by(user_id=user.id).first()
            if link is None:
                raise
            return link.stripe_customer_id

        logger.info("Linked Stripe customer", extra={"user_id": user.id, "customer_id": customer_id})
        return customer_id

    def _create_subscription(self, user, plan, customer_id) -> SubscriptionIntent:
        # A retried request after a crash between the processor call and the
        # commit below reuses the same key and gets the same subscription back.
        attempt = Subscription.query.filter_by(user_id=user.id).count()
        remote = self.gateway.create_subscription(
            customer_id,
            plan,
            user.id,
            idempotency_key=f"subscription:{user.id}:{plan.id}:{attempt}",
        )
        intent = latest_payment_intent(remote)

        with self._record_locks(remote.id, intent):
            subscription = select_for_update(Subscription, stripe_subscription_id=remote.id)
            if subscription is None:
                subscription = Subscription(
                    stripe_subscription_id=remote.id,
                    user_id=user.id,
                    plan_id=plan.id,
                    status=SubscriptionStatus.INCOMPLETE.value,
                )
                db.session.add(subscription)

            if intent is not None:
                subscription.latest_payment_intent_id = intent.id
                self._ensure_payment(user.id, remote.id, intent)

            try:
                db.session.commit()
            except IntegrityError:
                # a webhook for the same subscription or intent got its row in first
                db.session.rollback()
                if Subscription.query.filter_by(stripe_subscription_id=remote.id).first() is None:
                    raise
                logger.info("Subscription row already written by reconciler", extra={"subscription_id": remote.id})
            except Exception:
                db.session.rollback()
                raise

        logger.info(
            "Created subscription",
            extra={"user_id": user.id, "plan_id": plan.id, "subscription_id": remote.id},
        )
        return SubscriptionIntent(remote.id, intent.client_secret if intent is not None else None)

    @staticmethod
    def _record_locks(stripe_subscription_id, intent):
        """
        The locks the reconciler takes for the same rows: subscription first,
        then the payment intent when a pending payment is written alongside.
        """
        with ExitStack() as stack:
            stack.enter_context(resource_lock(subscription_lock_key(stripe_subscription_id)))
            if intent is not None:
                stack.enter_context(resource_lock(payment_lock_key(intent.id)))
            return stack.pop_all()

    @staticmethod
    def _ensure_payment(user_id, stripe_subscription_id, intent):
        if Payment.query.filter_by(stripe_payment_intent_id=intent.id).first() is not None:
            return

        db.session.add(
            Payment(
                stripe_payment_intent_id=intent.id,
                user_id=user_id,
                stripe_subscription_id=stripe_subscription_id,
                amount=intent.amount,
                currency=intent.currency,
                status=PaymentStatus.PENDING.value,
            )
        )
