"""Typed payment events consumed by fulfillment."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CHECKOUT_SESSION_FAILED = "checkout.session.failed"
CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"


class CheckoutSessionCompleted(BaseModel):
    """A payment provider confirmed that a checkout session was paid.

    `order_id` is the merchant correlation id we handed the provider when the
    session was created; it is required. Everything the provider may or may
    not echo back is optional.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    payment_session_id: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    payment_intent_id: Optional[str] = None
    customer_email: Optional[str] = None
    user_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    @field_validator("payment_session_id", "order_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CheckoutSessionClosed(BaseModel):
    """A checkout session ended without payment (failed or expired)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    payment_session_id: str = Field(min_length=1)
    expired: bool = False
    order_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    @field_validator("payment_session_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v
