# investorpedia/routes/webhooks.py
from flask import Blueprint, jsonify, request

from investorpedia.billing.ingestion import EventIngestionPipeline

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api")


@webhooks_bp.route("/stripe-webhook", methods=["POST"])
def stripe_webhook():
    """
    Stripe webhook receiver.

    Acknowledges once the event is recorded; reconciliation happens in the
    worker. Signature and payload errors answer 400 so Stripe stops
    retrying, persistence errors answer 500 so it redelivers.
    """
    # Signature is computed over the exact bytes, so never re-serialize the body
    payload = request.get_data(cache=False)
    signature = request.headers.get("Stripe-Signature")

    result = EventIngestionPipeline().ingest(payload, signature)

    body = {"received": True}
    if result.outcome == "ignored":
        body["ignored"] = True
    elif result.outcome == "duplicate":
        body["duplicate"] = True
    return jsonify(body), 200
