import logging
import threading
from decimal import Decimal

import pytest

from investorpedia.billing.events import decode_event
from investorpedia.billing.reconciler import ApplyOutcome, Reconciler
from investorpedia.extensions import db
from investorpedia import create_app
from investorpedia.config import TestingConfig
from investorpedia.models import EventStatus, Payment, Plan, StripeEvent, Subscription, User

from factories import build_event, payment_intent_object, subscription_object

pytestmark = pytest.mark.payment


@pytest.fixture()
def reconciler(app):
    return Reconciler()


@pytest.fixture()
def subscription(user, plan):
    record = Subscription(
        stripe_subscription_id="sub_test",
        user_id=user.id,
        plan_id=plan.id,
        status="incomplete",
    )
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture()
def payment(user):
    record = Payment(
        stripe_payment_intent_id="pi_test",
        user_id=user.id,
        stripe_subscription_id="sub_test",
        amount=2900,
        currency="usd",
        status="pending",
    )
    db.session.add(record)
    db.session.commit()
    return record


def _subscription_event(status, created, event_type="customer.subscription.updated", previous_status=None, **kwargs):
    previous = {"status": previous_status} if previous_status else None
    return decode_event(build_event(
        event_type,
        subscription_object("sub_test", status, **kwargs),
        created=created,
        previous_attributes=previous,
    ))


def _payment_event(event_type, created, **kwargs):
    return decode_event(build_event(event_type, payment_intent_object("pi_test", **kwargs), created=created))


def test_activation_sets_status_and_user_plan(reconciler, subscription, user, plan):
    outcome = reconciler.apply(_subscription_event("active", 100))

    assert outcome == ApplyOutcome.APPLIED
    assert subscription.status == "active"
    assert subscription.last_event_at == 100
    assert db.session.get(User, user.id).current_plan == plan.id


def test_out_of_order_events_converge_to_newest(reconciler, subscription):
    reconciler.apply(_subscription_event("past_due", 200))
    outcome = reconciler.apply(_subscription_event("active", 150))

    assert outcome == ApplyOutcome.STALE
    assert subscription.status == "past_due"
    assert subscription.last_event_at == 200


def test_equal_timestamps_are_applied_in_delivery_order(reconciler, subscription):
    reconciler.apply(_subscription_event("active", 300))
    outcome = reconciler.apply(_subscription_event("past_due", 300))

    assert outcome == ApplyOutcome.APPLIED
    assert subscription.status == "past_due"


def test_same_second_events_delivered_in_reverse_keep_the_later_change(reconciler, subscription):
    reconciler.apply(_subscription_event("past_due", 300, previous_status="active"))

    outcome = reconciler.apply(_subscription_event("active", 300, previous_status="incomplete"))

    assert outcome == ApplyOutcome.STALE
    assert subscription.status == "past_due"
    assert subscription.last_event_at == 300


def test_same_second_events_in_order_both_apply(reconciler, subscription):
    assert reconciler.apply(_subscription_event("active", 300, previous_status="incomplete")) == ApplyOutcome.APPLIED
    assert reconciler.apply(_subscription_event("past_due", 300, previous_status="active")) == ApplyOutcome.APPLIED

    assert subscription.status == "past_due"


def test_previous_status_survives_the_stored_payload():
    event = _subscription_event("past_due", 100, previous_status="active")

    stored = event.model_dump(mode="json", by_alias=True)

    assert decode_event(stored).previous_status == "active"


def test_past_due_recovers_to_active(reconciler, subscription):
    reconciler.apply(_subscription_event("active", 100))
    reconciler.apply(_subscription_event("past_due", 200))
    reconciler.apply(_subscription_event("active", 300))

    assert subscription.status == "active"


def test_canceled_is_terminal_even_for_newer_events(reconciler, subscription, user):
    reconciler.apply(_subscription_event("active", 100))
    reconciler.apply(_subscription_event("canceled", 200, event_type="customer.subscription.deleted"))

    outcome = reconciler.apply(_subscription_event("active", 500))

    assert outcome == ApplyOutcome.STALE
    assert subscription.status == "canceled"
    assert subscription.canceled_at is not None
    assert db.session.get(User, user.id).current_plan is None


def test_deletion_applies_even_when_older_than_last_event(reconciler, subscription):
    reconciler.apply(_subscription_event("active", 500))

    outcome = reconciler.apply(_subscription_event("canceled", 400, event_type="customer.subscription.deleted"))

    assert outcome == ApplyOutcome.APPLIED
    assert subscription.status == "canceled"
    assert subscription.last_event_at == 500


def test_active_never_regresses_to_incomplete(reconciler, subscription):
    reconciler.apply(_subscription_event("active", 100))

    outcome = reconciler.apply(_subscription_event("incomplete", 100, event_type="customer.subscription.created"))

    assert outcome == ApplyOutcome.STALE
    assert subscription.status == "active"


def test_unsupported_processor_status_is_ignored(reconciler, subscription):
    outcome = reconciler.apply(_subscription_event("paused", 100))

    assert outcome == ApplyOutcome.IGNORED
    assert subscription.status == "incomplete"


def test_missing_subscription_record_is_created_from_metadata(reconciler, user, plan):
    event = decode_event(build_event(
        "customer.subscription.created",
        subscription_object("sub_new", "active", user_id=user.id, plan_id=plan.id),
        created=100,
    ))

    outcome = reconciler.apply(event)

    assert outcome == ApplyOutcome.APPLIED
    record = Subscription.query.filter_by(stripe_subscription_id="sub_new").one()
    assert record.user_id == user.id
    assert record.status == "active"


def test_missing_subscription_resolved_through_customer_link(reconciler, customer_link):
    event = decode_event(build_event(
        "customer.subscription.updated",
        subscription_object("sub_linked", "past_due", customer=customer_link.stripe_customer_id),
        created=100,
    ))

    assert reconciler.apply(event) == ApplyOutcome.APPLIED
    record = Subscription.query.filter_by(stripe_subscription_id="sub_linked").one()
    assert record.user_id == customer_link.user_id


def test_orphan_subscription_event_is_logged_and_dropped(reconciler, caplog):
    event = decode_event(build_event(
        "customer.subscription.updated",
        subscription_object("sub_ghost", "active", user_id="no-such-user", customer="cus_unknown"),
        created=100,
    ))

    with caplog.at_level(logging.WARNING, logger="investorpedia.billing.reconciler"):
        outcome = reconciler.apply(event)

    assert outcome == ApplyOutcome.ORPHANED
    assert Subscription.query.count() == 0
    assert "Orphan event dropped" in caplog.text


def test_payment_success_then_late_failure(reconciler, payment):
    assert reconciler.apply(_payment_event("payment_intent.succeeded", 200)) == ApplyOutcome.APPLIED

    outcome = reconciler.apply(_payment_event("payment_intent.payment_failed", 250, error_message="declined"))

    assert outcome == ApplyOutcome.STALE
    assert payment.status == "succeeded"
    assert payment.failure_reason is None


def test_payment_failure_records_reason_and_can_recover(reconciler, payment):
    reconciler.apply(_payment_event("payment_intent.payment_failed", 100, error_message="Insufficient funds"))
    assert payment.status == "failed"
    assert payment.failure_reason == "Insufficient funds"

    reconciler.apply(_payment_event("payment_intent.succeeded", 200))
    assert payment.status == "succeeded"
    assert payment.failure_reason is None


def test_stale_payment_event_is_ignored(reconciler, payment):
    reconciler.apply(_payment_event("payment_intent.payment_failed", 300, error_message="declined"))

    outcome = reconciler.apply(_payment_event("payment_intent.succeeded", 200))

    assert outcome == ApplyOutcome.STALE
    assert payment.status == "failed"


def test_missing_payment_record_is_created(reconciler, user):
    event = decode_event(build_event(
        "payment_intent.succeeded",
        payment_intent_object("pi_offline", amount=9900, user_id=user.id),
        created=100,
    ))

    assert reconciler.apply(event) == ApplyOutcome.APPLIED
    record = Payment.query.filter_by(stripe_payment_intent_id="pi_offline").one()
    assert record.status == "succeeded"
    assert record.amount == 9900


def test_orphan_payment_event(reconciler):
    event = decode_event(build_event("payment_intent.succeeded", payment_intent_object("pi_ghost"), created=100))

    assert reconciler.apply(event) == ApplyOutcome.ORPHANED
    assert Payment.query.count() == 0


def _store(event_dict):
    record = StripeEvent(
        id=event_dict["id"],
        event_type=event_dict["type"],
        event_created=event_dict["created"],
        payload=event_dict,
        status=EventStatus.QUEUED.value,
    )
    db.session.add(record)
    db.session.commit()
    return record


def test_apply_stored_marks_event_and_is_idempotent(reconciler, subscription):
    record = _store(build_event("customer.subscription.updated", subscription_object("sub_test", "active"), created=100))

    assert reconciler.apply_stored(record.id) == ApplyOutcome.APPLIED
    assert reconciler.apply_stored(record.id) is None

    stored = db.session.get(StripeEvent, record.id)
    assert stored.status == EventStatus.APPLIED.value
    assert stored.attempts == 1
    assert stored.applied_at is not None
    assert subscription.status == "active"


def test_apply_stored_records_orphan_outcome(reconciler):
    record = _store(build_event("payment_intent.succeeded", payment_intent_object("pi_nobody"), created=100))

    assert reconciler.apply_stored(record.id) == ApplyOutcome.ORPHANED
    assert db.session.get(StripeEvent, record.id).status == EventStatus.ORPHANED.value


def test_apply_stored_rejects_undecodable_payload(reconciler):
    record = StripeEvent(
        id="evt_broken",
        event_type="payment_intent.succeeded",
        event_created=100,
        payload={"id": "evt_broken", "type": "payment_intent.succeeded", "created": 100, "data": {}},
        status=EventStatus.QUEUED.value,
    )
    db.session.add(record)
    db.session.commit()

    assert reconciler.apply_stored("evt_broken") is None
    assert db.session.get(StripeEvent, "evt_broken").status == EventStatus.REJECTED.value


def test_apply_stored_missing_row(reconciler):
    assert reconciler.apply_stored("evt_missing") is None


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """Application on a file database, so each thread gets its own connection"""
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'billing.db'}")
    app = create_app("testing")

    with app.app_context():
        db.create_all()
        db.session.add(User(id="user-race", email="race@example.com"))
        db.session.add(Plan(
            id="professional",
            name="Professional",
            price=Decimal("29.00"),
            features=[],
            rebalancing_frequency="weekly",
            management_fee=Decimal("0.0020"),
        ))
        db.session.add(Subscription(
            stripe_subscription_id="sub_race",
            user_id="user-race",
            plan_id="professional",
            status="incomplete",
        ))
        db.session.commit()

    yield app

    with app.app_context():
        db.drop_all()


def test_concurrent_events_for_one_subscription_serialize(file_app):
    events = [
        build_event("customer.subscription.updated", subscription_object("sub_race", "active"), created=1),
        build_event("customer.subscription.updated", subscription_object("sub_race", "past_due"), created=2),
    ]
    barrier = threading.Barrier(len(events))
    errors = []

    def deliver(payload):
        try:
            with file_app.app_context():
                event = decode_event(payload)
                barrier.wait()
                Reconciler().apply(event)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=deliver, args=(payload,)) for payload in events]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    with file_app.app_context():
        record = Subscription.query.filter_by(stripe_subscription_id="sub_race").one()
        assert record.status == "past_due"
        assert record.last_event_at == 2
