from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import stripe

from investorpedia.errors import NotFoundError, UpstreamError, ValidationError
from investorpedia.extensions import db
from investorpedia.models import CustomerLink, Payment, Subscription, User
from investorpedia.services.stripe_gateway import StripeGateway, latest_payment_intent
from investorpedia.services.subscription_service import SubscriptionIntentManager
from investorpedia.utils.locks import resource_lock

pytestmark = pytest.mark.payment


def _remote_subscription(subscription_id="sub_remote", intent_id="pi_remote", secret="pi_remote_secret_abc"):
    intent = SimpleNamespace(id=intent_id, client_secret=secret, amount=2900, currency="usd")
    return SimpleNamespace(
        id=subscription_id,
        status="incomplete",
        latest_invoice=SimpleNamespace(id="in_1", payment_intent=intent),
    )


@pytest.fixture()
def gateway():
    gateway = Mock(spec=StripeGateway)
    gateway.create_customer.return_value = "cus_new"
    gateway.create_subscription.return_value = _remote_subscription()
    gateway.retrieve_subscription.return_value = _remote_subscription()
    return gateway


@pytest.fixture()
def manager(app, gateway):
    return SubscriptionIntentManager(gateway=gateway)


def test_creates_customer_subscription_and_pending_records(manager, gateway, user, plan):
    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.subscription_id == "sub_remote"
    assert intent.client_secret == "pi_remote_secret_abc"

    gateway.create_customer.assert_called_once()
    assert gateway.create_customer.call_args.kwargs["idempotency_key"] == f"customer:{user.id}"
    gateway.create_subscription.assert_called_once_with(
        "cus_new", plan, user.id, idempotency_key=f"subscription:{user.id}:{plan.id}:0"
    )

    assert CustomerLink.query.filter_by(user_id=user.id).one().stripe_customer_id == "cus_new"
    subscription = Subscription.query.filter_by(user_id=user.id).one()
    assert subscription.status == "incomplete"
    assert subscription.latest_payment_intent_id == "pi_remote"
    payment = Payment.query.filter_by(stripe_payment_intent_id="pi_remote").one()
    assert payment.status == "pending"
    assert payment.amount == 2900


def test_status_is_not_advanced_at_creation(manager, gateway, user, plan):
    remote = _remote_subscription()
    remote.status = "active"
    gateway.create_subscription.return_value = remote

    manager.create_or_get_subscription(user.id, plan.id)

    assert Subscription.query.filter_by(user_id=user.id).one().status == "incomplete"
    assert db.session.get(User, user.id).current_plan is None


def test_repeat_call_returns_existing_subscription(manager, gateway, user, plan):
    first = manager.create_or_get_subscription(user.id, plan.id)
    second = manager.create_or_get_subscription(user.id, plan.id)

    assert first == second
    assert gateway.create_subscription.call_count == 1
    assert gateway.create_customer.call_count == 1
    gateway.retrieve_subscription.assert_called_once_with("sub_remote")
    assert Subscription.query.filter_by(user_id=user.id).count() == 1


def test_existing_subscription_picks_up_new_payment_intent(manager, gateway, user, plan):
    manager.create_or_get_subscription(user.id, plan.id)
    gateway.retrieve_subscription.return_value = _remote_subscription(intent_id="pi_retry", secret="pi_retry_secret")

    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.client_secret == "pi_retry_secret"
    assert Subscription.query.filter_by(user_id=user.id).one().latest_payment_intent_id == "pi_retry"
    assert Payment.query.filter_by(user_id=user.id).count() == 2


def test_canceled_subscription_allows_a_new_one(manager, gateway, user, plan):
    manager.create_or_get_subscription(user.id, plan.id)
    record = Subscription.query.filter_by(user_id=user.id).one()
    record.status = "canceled"
    db.session.commit()
    gateway.create_subscription.return_value = _remote_subscription("sub_second", "pi_second", "secret_2")

    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.subscription_id == "sub_second"
    assert gateway.create_subscription.call_args.kwargs["idempotency_key"] == f"subscription:{user.id}:{plan.id}:1"
    # customer is reused
    assert gateway.create_customer.call_count == 1


def test_existing_customer_link_is_reused(manager, gateway, customer_link, plan):
    manager.create_or_get_subscription(customer_link.user_id, plan.id)

    gateway.create_customer.assert_not_called()
    assert gateway.create_subscription.call_args.args[0] == customer_link.stripe_customer_id


def test_missing_plan_id(manager, user):
    with pytest.raises(ValidationError):
        manager.create_or_get_subscription(user.id, None)


def test_unknown_user(manager, plan):
    with pytest.raises(NotFoundError):
        manager.create_or_get_subscription("missing-user", plan.id)


def test_unknown_plan(manager, user):
    with pytest.raises(NotFoundError):
        manager.create_or_get_subscription(user.id, "platinum")


def test_user_without_email(manager, gateway, user, plan):
    user.email = None
    db.session.commit()

    with pytest.raises(ValidationError):
        manager.create_or_get_subscription(user.id, plan.id)

    gateway.create_customer.assert_not_called()


def test_upstream_failure_persists_nothing_for_the_failed_step(manager, gateway, user, plan):
    gateway.create_subscription.side_effect = UpstreamError("Payment processor error: card_declined")

    with pytest.raises(UpstreamError):
        manager.create_or_get_subscription(user.id, plan.id)

    assert Subscription.query.count() == 0
    assert Payment.query.count() == 0
    # the customer call succeeded and stays linked for the retry
    assert CustomerLink.query.filter_by(user_id=user.id).count() == 1


def test_webhook_that_arrived_first_is_not_overwritten(manager, gateway, user, plan):
    db.session.add(Subscription(
        stripe_subscription_id="sub_remote",
        user_id=user.id,
        plan_id=plan.id,
        status="active",
        last_event_at=100,
    ))
    db.session.commit()
    # the early record is open, so the manager returns it instead of creating
    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.subscription_id == "sub_remote"
    gateway.create_subscription.assert_not_called()
    assert Subscription.query.one().status == "active"


def test_payment_written_first_by_reconciler_keeps_the_subscription(manager, gateway, user, plan):
    db.session.add(Payment(
        stripe_payment_intent_id="pi_remote",
        user_id=user.id,
        stripe_subscription_id="sub_remote",
        amount=2900,
        currency="usd",
        status="succeeded",
        last_event_at=100,
    ))
    db.session.commit()

    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.subscription_id == "sub_remote"
    subscription = Subscription.query.filter_by(stripe_subscription_id="sub_remote").one()
    assert subscription.latest_payment_intent_id == "pi_remote"
    payment = Payment.query.filter_by(stripe_payment_intent_id="pi_remote").one()
    assert payment.status == "succeeded"


def test_pending_payment_is_written_under_the_payment_lock(manager, user, plan):
    with patch(
        "investorpedia.services.subscription_service.resource_lock", wraps=resource_lock
    ) as mock_lock:
        manager.create_or_get_subscription(user.id, plan.id)

    keys = [call.args[0] for call in mock_lock.call_args_list]
    assert keys == [f"user:{user.id}", "subscription:sub_remote", "payment:pi_remote"]


def test_free_plan_has_no_client_secret(manager, gateway, user, plan):
    gateway.create_subscription.return_value = SimpleNamespace(id="sub_free", status="active", latest_invoice=None)

    intent = manager.create_or_get_subscription(user.id, plan.id)

    assert intent.subscription_id == "sub_free"
    assert intent.client_secret is None
    assert Payment.query.count() == 0


def test_latest_payment_intent_handles_unexpanded_fields():
    assert latest_payment_intent(SimpleNamespace(latest_invoice="in_123")) is None
    assert latest_payment_intent(SimpleNamespace(latest_invoice=SimpleNamespace(payment_intent="pi_1"))) is None
    assert latest_payment_intent(SimpleNamespace()) is None


def test_gateway_maps_stripe_errors_to_upstream_error(app, user, plan):
    error = stripe.CardError("Your card was declined.", param=None, code="card_declined")

    with patch("investorpedia.services.stripe_gateway.stripe.Subscription.create", side_effect=error):
        with pytest.raises(UpstreamError) as excinfo:
            StripeGateway().create_subscription("cus_1", plan, user.id, idempotency_key="k")

    assert excinfo.value.status_code == 500
    assert "declined" in excinfo.value.message


def test_gateway_sends_price_and_idempotency_key(app, user, plan):
    with patch("investorpedia.services.stripe_gateway.stripe.Subscription.create") as mock_create:
        mock_create.return_value = _remote_subscription()
        StripeGateway().create_subscription("cus_1", plan, user.id, idempotency_key="subscription:key")

    kwargs = mock_create.call_args.kwargs
    assert kwargs["customer"] == "cus_1"
    assert kwargs["items"][0]["price_data"]["unit_amount"] == 2900
    assert kwargs["payment_behavior"] == "default_incomplete"
    assert kwargs["metadata"] == {"user_id": user.id, "plan_id": plan.id}
    assert kwargs["idempotency_key"] == "subscription:key"
    assert kwargs["expand"] == ["latest_invoice.payment_intent"]
