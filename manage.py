"""Management script for database migrations and billing maintenance"""

import click
from flask.cli import FlaskGroup

from investorpedia import create_app


def _create_app():
    return create_app()


cli = FlaskGroup(create_app=_create_app)


@cli.command("drop-db")
def drop_db():
    """Drop all database tables"""
    from investorpedia.extensions import db

    if not click.confirm("Are you sure you want to drop all tables?"):
        click.echo("Operation cancelled.")
        return
    db.drop_all()
    click.echo("Database dropped.")


@cli.command("prune-events")
def prune_events():
    """Delete processed webhook events older than the retention window"""
    from investorpedia.workers.tasks import prune_processed_events

    count = prune_processed_events.run()
    click.echo(f"Pruned {count} processed event(s).")


if __name__ == "__main__":
    cli()
