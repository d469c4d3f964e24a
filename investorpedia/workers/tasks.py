# workers/tasks.py
from datetime import timedelta

from celery import shared_task
from celery.utils.log import get_task_logger
from flask import current_app
from kombu.exceptions import OperationalError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from investorpedia.billing.reconciler import Reconciler
from investorpedia.errors import LockTimeout
from investorpedia.extensions import db
from investorpedia.models import EventStatus, StripeEvent
from investorpedia.models.user import utcnow

logger = get_task_logger(__name__)

SWEEP_BATCH_SIZE = 500


@shared_task(
    bind=True,
    autoretry_for=(SQLAlchemyError, LockTimeout),
    retry_backoff=5,
    retry_backoff_max=300,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
    ignore_result=True,
)
def reconcile_stripe_event(self, event_id):
    outcome = Reconciler().apply_stored(event_id)
    return outcome.value if outcome is not None else None


def dispatch_reconciliation(event_id):
    """
    Hand a recorded event to the worker queue.

    The event row is already committed, so a broker outage only delays
    reconciliation until the next sweep.
    """
    try:
        reconcile_stripe_event.delay(event_id)
    except OperationalError:
        logger.warning(
            "Broker unavailable, event left queued for the sweeper",
            extra={"event_id": event_id},
        )


@shared_task(ignore_result=True)
def sweep_queued_events():
    """Re-dispatch events recorded but never reconciled."""
    cutoff = utcnow() - timedelta(seconds=current_app.config["EVENT_SWEEP_AFTER_SECONDS"])
    stmt = (
        select(StripeEvent.id)
        .filter(StripeEvent.status == EventStatus.QUEUED.value, StripeEvent.received_at < cutoff)
        .order_by(StripeEvent.event_created)
        .limit(SWEEP_BATCH_SIZE)
    )
    event_ids = db.session.execute(stmt).scalars().all()

    for event_id in event_ids:
        dispatch_reconciliation(event_id)

    if event_ids:
        logger.info("Re-dispatched queued events", extra={"count": len(event_ids)})
    return len(event_ids)


@shared_task(ignore_result=True)
def prune_processed_events():
    """Delete handled events past the retention window; queued rows are kept."""
    cutoff = utcnow() - timedelta(days=current_app.config["EVENT_RETENTION_DAYS"])
    try:
        result = db.session.execute(
            delete(StripeEvent).where(
                StripeEvent.status != EventStatus.QUEUED.value,
                StripeEvent.received_at < cutoff,
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Pruned processed events", extra={"count": result.rowcount})
    return result.rowcount
