# stripe_gateway.py
"""
Thin wrapper over the Stripe SDK.

Every call goes through `stripe_operation`, which logs timing and turns SDK
errors into `UpstreamError`. Nothing here retries: subscription creation is
user-interactive and the client decides whether to try again.
"""

import logging
import time
from contextlib import contextmanager
from typing import Optional

import stripe
from flask import current_app

from investorpedia.errors import UpstreamError

logger = logging.getLogger(__name__)


def init_stripe(app):
    """Configure the module-level Stripe client from app config."""
    stripe.api_key = app.config.get("STRIPE_SECRET_KEY")
    stripe.api_version = app.config.get("STRIPE_API_VERSION")
    stripe.max_network_retries = app.config.get("STRIPE_MAX_NETWORK_RETRIES", 0)

    if not stripe.api_key:
        app.logger.warning("STRIPE_SECRET_KEY not set - subscription creation will fail")


@contextmanager
def stripe_operation(operation_name: str, **context):
    """
    Context manager for Stripe operations.

    Example:
        with stripe_operation("create_customer", user_id=user.id):
            stripe.Customer.create(...)
    """
    started = time.monotonic()
    try:
        yield
    except stripe.StripeError as exc:
        logger.error(
            f"Stripe operation failed: {operation_name}",
            extra={
                "operation": operation_name,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
                "error_type": type(exc).__name__,
                "stripe_request_id": getattr(exc, "request_id", None),
                **context,
            },
        )
        raise UpstreamError(f"Payment processor error: {exc.user_message or str(exc)}")
    else:
        logger.info(
            f"Completed Stripe operation: {operation_name}",
            extra={
                "operation": operation_name,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
                **context,
            },
        )


class StripeGateway:
    """Processor-side customer, subscription and invoice calls."""

    EXPAND_PAYMENT_INTENT = ["latest_invoice.payment_intent"]

    def create_customer(self, user, idempotency_key: str) -> str:
        with stripe_operation("create_customer", user_id=user.id):
            customer = stripe.Customer.create(
                email=user.email,
                name=user.display_name,
                metadata={"user_id": user.id},
                idempotency_key=idempotency_key,
            )
        return customer.id

    def create_subscription(self, customer_id: str, plan, user_id: str, idempotency_key: str):
        currency = current_app.config.get("BILLING_CURRENCY", "usd")
        interval = current_app.config.get("BILLING_INTERVAL", "month")

        with stripe_operation("create_subscription", user_id=user_id, plan_id=plan.id):
            return stripe.Subscription.create(
                customer=customer_id,
                items=[{
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": plan.name},
                        "unit_amount": plan.unit_amount,
                        "recurring": {"interval": interval},
                    },
                }],
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                metadata={"user_id": user_id, "plan_id": plan.id},
                expand=self.EXPAND_PAYMENT_INTENT,
                idempotency_key=idempotency_key,
            )

    def retrieve_subscription(self, subscription_id: str):
        with stripe_operation("retrieve_subscription", subscription_id=subscription_id):
            return stripe.Subscription.retrieve(subscription_id, expand=self.EXPAND_PAYMENT_INTENT)


def latest_payment_intent(subscription) -> Optional[object]:
    """
    The expanded payment intent of a subscription's latest invoice, or None
    when the invoice needs no payment (free plan, already paid).
    """
    invoice = getattr(subscription, "latest_invoice", None)
    if invoice is None or isinstance(invoice, str):
        return None

    intent = getattr(invoice, "payment_intent", None)
    if intent is None or isinstance(intent, str):
        return None
    return intent
