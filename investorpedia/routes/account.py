# investorpedia/routes/account.py
from typing import Optional

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import IntegrityError

from investorpedia.errors import ConflictError, NotFoundError, ValidationError
from investorpedia.extensions import db
from investorpedia.models import Plan, Portfolio, PortfolioHistory, User

account_bp = Blueprint("account", __name__, url_prefix="/api")

PORTFOLIO_HISTORY_POINTS = 10


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=100)
    email: Optional[EmailStr] = None


def _current_user():
    user = db.session.get(User, get_jwt_identity())
    if user is None:
        raise NotFoundError("User not found")
    return user


@account_bp.route("/auth/user", methods=["GET"])
@jwt_required()
def auth_user():
    return jsonify(_current_user().to_dict()), 200


@account_bp.route("/profile", methods=["PUT"])
@jwt_required()
def update_profile():
    try:
        update = ProfileUpdate.model_validate(request.get_json(silent=True) or {})
    except SchemaError as exc:
        raise ValidationError(
            "Invalid profile data",
            {"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]},
        )

    user = _current_user()
    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(user, field, value)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already in use")

    return jsonify(user.to_dict()), 200


@account_bp.route("/plans", methods=["GET"])
def list_plans():
    plans = Plan.query.order_by(Plan.price).all()
    return jsonify([plan.to_dict() for plan in plans]), 200


@account_bp.route("/portfolio", methods=["GET"])
@jwt_required()
def portfolio():
    user = _current_user()

    record = Portfolio.query.filter_by(user_id=user.id).first()
    if record is None:
        record = Portfolio(user_id=user.id)
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError:
            # concurrent first access created it
            db.session.rollback()
            record = Portfolio.query.filter_by(user_id=user.id).one()

    history = (
        record.history.order_by(PortfolioHistory.date.desc())
        .limit(PORTFOLIO_HISTORY_POINTS)
        .all()
    )
    return jsonify({
        "portfolio": record.to_dict(),
        "history": [point.to_dict() for point in history],
    }), 200
