"""
Typed Stripe webhook events.

Payloads are decoded at the boundary into one variant of a tagged union.
Types this service does not act on decode to `UnknownEvent` so new Stripe
event types are acknowledged instead of rejected.
"""

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from investorpedia.errors import ValidationError
from investorpedia.utils.locks import payment_lock_key, subscription_lock_key


class _StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# ==================== DATA OBJECTS ====================

class PaymentIntentObject(_StripeModel):
    id: str
    amount: int = 0
    currency: str = "usd"
    customer: Optional[str] = None
    invoice: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    last_payment_error: Optional[Dict[str, Any]] = None

    @property
    def failure_message(self) -> Optional[str]:
        if not self.last_payment_error:
            return None
        return self.last_payment_error.get("message") or self.last_payment_error.get("code")


class SubscriptionObject(_StripeModel):
    id: str
    status: str
    customer: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentIntentData(_StripeModel):
    obj: PaymentIntentObject = Field(alias="object")


class SubscriptionData(_StripeModel):
    obj: SubscriptionObject = Field(alias="object")
    # only present on customer.subscription.updated
    previous_attributes: Optional[Dict[str, Any]] = None


# ==================== EVENT VARIANTS ====================

class _Event(_StripeModel):
    id: str
    created: int


class _PaymentIntentEvent(_Event):
    data: PaymentIntentData

    @property
    def payment_intent(self) -> PaymentIntentObject:
        return self.data.obj

    @property
    def lock_key(self) -> str:
        return payment_lock_key(self.payment_intent.id)


class PaymentIntentSucceeded(_PaymentIntentEvent):
    type: Literal["payment_intent.succeeded"]


class PaymentIntentFailed(_PaymentIntentEvent):
    type: Literal["payment_intent.payment_failed"]


class _SubscriptionEvent(_Event):
    data: SubscriptionData

    @property
    def subscription(self) -> SubscriptionObject:
        return self.data.obj

    @property
    def previous_status(self) -> Optional[str]:
        """Status the subscription had before this change, when Stripe reports it."""
        return (self.data.previous_attributes or {}).get("status")

    @property
    def lock_key(self) -> str:
        return subscription_lock_key(self.subscription.id)


class SubscriptionCreated(_SubscriptionEvent):
    type: Literal["customer.subscription.created"]


class SubscriptionUpdated(_SubscriptionEvent):
    type: Literal["customer.subscription.updated"]


class SubscriptionDeleted(_SubscriptionEvent):
    type: Literal["customer.subscription.deleted"]


class UnknownEvent(_Event):
    type: str

    @property
    def lock_key(self) -> None:
        return None


KnownEvent = Annotated[
    Union[
        PaymentIntentSucceeded,
        PaymentIntentFailed,
        SubscriptionCreated,
        SubscriptionUpdated,
        SubscriptionDeleted,
    ],
    Field(discriminator="type"),
]

StripeEventVariant = Union[
    PaymentIntentSucceeded,
    PaymentIntentFailed,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    UnknownEvent,
]

KNOWN_EVENT_TYPES = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})

_known_event_adapter = TypeAdapter(KnownEvent)


def decode_event(payload) -> StripeEventVariant:
    """
    Decode a webhook payload (raw bytes/str or an already-parsed dict).

    Raises:
        ValidationError: if the payload is not JSON or misses required fields
    """
    if isinstance(payload, (bytes, bytearray, str)):
        try:
            payload = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Malformed webhook payload: {exc}")

    if not isinstance(payload, dict):
        raise ValidationError("Malformed webhook payload: expected a JSON object")

    try:
        event_type = payload.get("type")
        if not isinstance(event_type, str) or event_type not in KNOWN_EVENT_TYPES:
            return UnknownEvent.model_validate(payload)
        return _known_event_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Malformed webhook payload",
            payload={"errors": [
                {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
                for error in exc.errors()
            ]},
        )
