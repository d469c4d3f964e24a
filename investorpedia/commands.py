"""
Flask CLI commands: `flask init-db`, `flask seed-plans`, `flask sweep-events`.

Plan seeding is an explicit deployment step and never runs at request time
or on app start.
"""

from decimal import Decimal

import click
from flask import current_app
from sqlalchemy.exc import IntegrityError

from investorpedia.extensions import db
from investorpedia.models import Plan

DEFAULT_PLANS = [
    {
        "id": "starter",
        "name": "Starter",
        "price": Decimal("0.00"),
        "features": [
            "Up to $10,000 portfolio",
            "Basic portfolio tracking",
            "Monthly rebalancing",
            "Email support",
        ],
        "portfolio_limit": 10000,
        "rebalancing_frequency": "monthly",
        "management_fee": Decimal("0.0025"),
        "has_advanced_analytics": False,
        "has_tax_optimization": False,
        "has_dedicated_advisor": False,
        "is_popular": False,
    },
    {
        "id": "professional",
        "name": "Professional",
        "price": Decimal("29.00"),
        "features": [
            "Up to $100,000 portfolio",
            "Advanced analytics",
            "Weekly rebalancing",
            "Priority support",
            "Tax optimization",
        ],
        "portfolio_limit": 100000,
        "rebalancing_frequency": "weekly",
        "management_fee": Decimal("0.0020"),
        "has_advanced_analytics": True,
        "has_tax_optimization": True,
        "has_dedicated_advisor": False,
        "is_popular": True,
    },
    {
        "id": "enterprise",
        "name": "Enterprise",
        "price": Decimal("99.00"),
        "features": [
            "Unlimited portfolio size",
            "AI-powered insights",
            "Daily rebalancing",
            "Dedicated advisor",
            "Custom strategies",
        ],
        "portfolio_limit": None,
        "rebalancing_frequency": "daily",
        "management_fee": Decimal("0.0015"),
        "has_advanced_analytics": True,
        "has_tax_optimization": True,
        "has_dedicated_advisor": True,
        "is_popular": False,
    },
]


def seed_plans(plans=None):
    """
    Insert the plan catalog. Existing plans are left untouched.

    Each insert runs in its own SAVEPOINT, so a concurrent seeder winning
    the primary key only skips that plan.

    Returns:
        (created, skipped) lists of plan ids
    """
    created, skipped = [], []

    for data in plans or DEFAULT_PLANS:
        if db.session.get(Plan, data["id"]) is not None:
            skipped.append(data["id"])
            continue
        try:
            with db.session.begin_nested():
                db.session.add(Plan(**data))
            created.append(data["id"])
        except IntegrityError:
            skipped.append(data["id"])

    db.session.commit()
    return created, skipped


def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables (use `flask db upgrade` where migrations exist)."""
        db.create_all()
        click.echo("Database initialized.")

    @app.cli.command("seed-plans")
    def seed_plans_command():
        """Insert the default plans; safe to run repeatedly."""
        created, skipped = seed_plans()
        click.echo(f"Plans created: {', '.join(created) or 'none'}")
        click.echo(f"Plans already present: {', '.join(skipped) or 'none'}")

    @app.cli.command("sweep-events")
    def sweep_events():
        """Re-dispatch webhook events that were recorded but not reconciled."""
        from investorpedia.workers.tasks import sweep_queued_events

        count = sweep_queued_events.run()
        click.echo(f"Re-dispatched {count} queued event(s).")
        current_app.logger.info("Manual sweep finished", extra={"count": count})
