import json
from decimal import Decimal

import pytest
from faker import Faker
from flask_jwt_extended import create_access_token

from investorpedia import create_app
from investorpedia.extensions import db
from investorpedia.models import CustomerLink, Plan, User

from factories import sign

# Initialize Faker for generating test data
fake = Faker()


def pytest_configure(config):
    config.addinivalue_line("markers", "payment: mark test as payment-related")
    config.addinivalue_line("markers", "webhook: mark test as webhook-related")


@pytest.fixture()
def app():
    """Application with a fresh in-memory database per test"""
    app = create_app("testing")

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def plan(app):
    plan = Plan(
        id="professional",
        name="Professional",
        price=Decimal("29.00"),
        features=["Advanced analytics", "Weekly rebalancing"],
        portfolio_limit=100000,
        rebalancing_frequency="weekly",
        management_fee=Decimal("0.0020"),
        has_advanced_analytics=True,
        has_tax_optimization=True,
        is_popular=True,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture()
def user(app):
    user = User(
        id=fake.uuid4(),
        email=fake.unique.email(),
        first_name=fake.first_name(),
        last_name=fake.last_name(),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def customer_link(user):
    link = CustomerLink(user_id=user.id, stripe_customer_id=f"cus_{fake.lexify('??????????')}")
    db.session.add(link)
    db.session.commit()
    return link


@pytest.fixture()
def auth_headers(user):
    token = create_access_token(identity=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def post_webhook(client):
    """Sign and POST an event dict (or raw bytes) to the webhook endpoint"""

    def _post(event, signature=None):
        raw = event if isinstance(event, bytes) else json.dumps(event).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        header = sign(raw) if signature is None else signature
        if header:
            headers["Stripe-Signature"] = header
        return client.post("/api/stripe-webhook", data=raw, headers=headers)

    return _post
