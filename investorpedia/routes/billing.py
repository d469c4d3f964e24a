# investorpedia/routes/billing.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from investorpedia.errors import NotFoundError
from investorpedia.models import Payment, Subscription
from investorpedia.services.subscription_service import SubscriptionIntentManager

billing_bp = Blueprint("billing", __name__, url_prefix="/api")


@billing_bp.route("/create-subscription", methods=["POST"])
@jwt_required()
def create_subscription():
    """
    Start (or resume) checkout for a plan.

    Returns:
        {"subscriptionId": ..., "clientSecret": ...} for the user's single
        open subscription.
    """
    data = request.get_json(silent=True) or {}
    intent = SubscriptionIntentManager().create_or_get_subscription(
        get_jwt_identity(), data.get("planId")
    )
    return jsonify(intent.to_dict()), 200


@billing_bp.route("/subscription", methods=["GET"])
@jwt_required()
def current_subscription():
    subscription = (
        Subscription.query.filter_by(user_id=get_jwt_identity())
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if subscription is None:
        raise NotFoundError("No subscription found")
    return jsonify(subscription.to_dict()), 200


@billing_bp.route("/payments", methods=["GET"])
@jwt_required()
def list_payments():
    payments = (
        Payment.query.filter_by(user_id=get_jwt_identity())
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return jsonify([payment.to_dict() for payment in payments]), 200
