import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from investorpedia.billing.events import UnknownEvent, decode_event
from investorpedia.errors import AuthenticationError
from investorpedia.extensions import db
from investorpedia.models import EventStatus, StripeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    outcome: str  # "queued", "duplicate" or "ignored"
    event_id: Optional[str] = None
    event_type: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.outcome == "queued"


class EventIngestionPipeline:
    """
    Verifies, decodes and deduplicates Stripe webhook deliveries, then hands
    them to the reconciler queue.

    Only verification and a single INSERT happen inline so the webhook
    acknowledges well within Stripe's delivery timeout.
    """

    def __init__(self, dispatcher=None, webhook_secret=None, tolerance=None):
        self._dispatcher = dispatcher
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance

    @property
    def webhook_secret(self):
        return self._webhook_secret or current_app.config["STRIPE_WEBHOOK_SECRET"]

    @property
    def tolerance(self):
        if self._tolerance is not None:
            return self._tolerance
        return current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300)

    def ingest(self, raw_payload: bytes, signature_header: Optional[str]) -> IngestResult:
        """
        Raises:
            AuthenticationError: signature missing or invalid, nothing is persisted
            ValidationError: payload is not a well-formed event
            SQLAlchemyError: the event could not be recorded; the caller must
                answer non-2xx so Stripe redelivers
        """
        self.verify_signature(raw_payload, signature_header)

        event = decode_event(raw_payload)

        if isinstance(event, UnknownEvent):
            logger.info("Unhandled event type acknowledged", extra={"event_id": event.id, "event_type": event.type})
            return IngestResult("ignored", event.id, event.type)

        if db.session.get(StripeEvent, event.id) is not None:
            logger.info("Duplicate event delivery", extra={"event_id": event.id, "event_type": event.type})
            return IngestResult("duplicate", event.id, event.type)

        # Dedup record and queue entry are the same row: one INSERT, one commit
        db.session.add(
            StripeEvent(
                id=event.id,
                event_type=event.type,
                event_created=event.created,
                payload=event.model_dump(mode="json", by_alias=True),
                status=EventStatus.QUEUED.value,
            )
        )
        try:
            db.session.commit()
        except IntegrityError:
            # lost the primary-key race against a concurrent delivery of the same event
            db.session.rollback()
            logger.info("Duplicate event delivery (concurrent)", extra={"event_id": event.id})
            return IngestResult("duplicate", event.id, event.type)
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Event queued for reconciliation",
            extra={"event_id": event.id, "event_type": event.type, "event_created": event.created},
        )
        self._dispatch(event.id)
        return IngestResult("queued", event.id, event.type)

    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> None:
        if not signature_header:
            raise AuthenticationError("Missing Stripe-Signature header")

        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
            raise AuthenticationError("Webhook signature cannot be verified")

        try:
            stripe.WebhookSignature.verify_header(
                raw_payload,
                signature_header,
                self.webhook_secret,
                tolerance=self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            # the SDK decodes the body as UTF-8 before comparing signatures
            logger.warning("Webhook signature verification failed", extra={"reason": str(exc)})
            raise AuthenticationError("Invalid webhook signature")

    def _dispatch(self, event_id: str) -> None:
        if self._dispatcher is not None:
            self._dispatcher(event_id)
            return

        from investorpedia.workers.tasks import dispatch_reconciliation

        dispatch_reconciliation(event_id)
