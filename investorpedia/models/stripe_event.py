from enum import Enum

from sqlalchemy import Index

from investorpedia.extensions import db
from investorpedia.models.user import utcnow


class EventStatus(str, Enum):
    QUEUED = "queued"
    APPLIED = "applied"
    STALE = "stale"
    ORPHANED = "orphaned"
    IGNORED = "ignored"
    REJECTED = "rejected"


class StripeEvent(db.Model):
    """
    Processed event log and reconciler queue in one row.

    The primary key is the processor event id, so inserting the row is both
    the deduplication record and the enqueue; a concurrent duplicate delivery
    loses on the primary key.
    """

    __tablename__ = "stripe_events"

    id = db.Column(db.String(255), primary_key=True)
    event_type = db.Column(db.String(100), nullable=False)
    event_created = db.Column(db.BigInteger, nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=EventStatus.QUEUED.value)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    applied_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        Index("idx_stripe_events_status_received", "status", "received_at"),
    )

    def __repr__(self):
        return f"<StripeEvent {self.id} {self.event_type} {self.status}>"
