"""Turning a basket into a pending order and a payment session."""
from __future__ import annotations
import logging
import math
from typing import List, Optional

from pydantic import BaseModel, Field

from .config import CURRENCY
from .errors import InvalidCheckout
from .helpers import is_valid_email, normalize_email, to_pence
from .infra.timings import timeit
from .mockpay import PaymentAdapter
from .model.domain import Order, OrderItem
from .model.orders import OrderLedger

logger = logging.getLogger(__name__)


class BasketItem(BaseModel):
    id: str
    title: str = ""
    qty: int = 1
    price: float = 0.0  # pounds
    pointsPerTicket: Optional[float] = None
    skillQuestionId: str = ""
    skillQuestion: str = ""
    selectedAnswer: str = ""


class Customer(BaseModel):
    email: str = ""
    userId: str = ""
    name: str = ""
    phone: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    postcode: str = ""


class PointsRequest(BaseModel):
    requested: bool = False
    pointsApplied: float = 0
    payableTotal: Optional[float] = None
    discountGBP: float = 0


class CheckoutRequest(BaseModel):
    items: List[BasketItem] = Field(default_factory=list)
    customer: Customer = Field(default_factory=Customer)
    usePoints: bool = False
    points: PointsRequest = Field(default_factory=PointsRequest)


def _ppt(raw: Optional[float]) -> int:
    if raw is None or not math.isfinite(raw) or raw <= 0:
        return 1
    return int(raw)


def build_draft(req: CheckoutRequest) -> Order:
    """Validate a basket and shape it into an unsaved order."""
    if not req.items:
        raise InvalidCheckout("No items provided")
    email = normalize_email(req.customer.email)
    if not is_valid_email(email):
        raise InvalidCheckout(
            "customer email is required and must be a valid email address"
        )

    use_points = req.usePoints or req.points.requested
    raw_applied = req.points.pointsApplied if use_points else 0
    points_applied = (
        math.floor(raw_applied)
        if math.isfinite(raw_applied) and raw_applied > 0 else 0
    )

    items = tuple(
        OrderItem(
            competition_id=str(it.id).strip(),
            title=it.title,
            qty=max(1, int(it.qty or 1)),
            unit_price=to_pence(it.price),
            currency=CURRENCY,
            ppt=_ppt(it.pointsPerTicket),
            skill_question_id=it.skillQuestionId.strip(),
            skill_question=it.skillQuestion,
            selected_answer=it.selectedAnswer,
        )
        for it in req.items
    )

    if req.points.payableTotal is not None and math.isfinite(
        req.points.payableTotal
    ):
        amount_total = to_pence(req.points.payableTotal)
    else:
        amount_total = sum(it.qty * it.unit_price for it in items)

    c = req.customer
    return Order(
        id="",
        email=email,
        items=items,
        amount_total=amount_total,
        currency=CURRENCY,
        user_id=c.userId.strip(),
        name=c.name,
        phone=c.phone,
        address1=c.address1,
        address2=c.address2,
        city=c.city,
        postcode=c.postcode,
        points_applied=points_applied,
    )


async def start_checkout(
    req: CheckoutRequest, ledger: OrderLedger, adapter: PaymentAdapter
) -> dict:
    draft = build_draft(req)
    order = await ledger.create(draft)
    session = adapter.create_session(order.id)
    psid = session["payment_session_id"]
    async with timeit("ledger.attach_session"):
        await ledger.attach_payment_session(order.id, psid)
    logger.info("checkout: order %s -> session %s (%d pence, %d points)",
                order.id, psid, order.amount_total, order.points_applied)
    return {
        "order_id": order.id,
        "payment_session_id": psid,
        "redirect_url": session["redirect_url"],
        "amount": order.amount_total,
        "currency": order.currency,
        "points_applied": order.points_applied,
    }
