"""Plain domain records passed between the stores and the coordinator.

The ORM rows in `model/orm.py` never leave the stores; callers get these.
"""

from dataclasses import dataclass, replace
from typing import Optional

from ..helpers import to_iso
from .orm import PENDING, PAID


@dataclass(frozen=True)
class Ticket:
    competition_id: str
    number: int
    competition_ref: Optional[str] = None
    email: str = ""
    created_at: float = 0.0


@dataclass(frozen=True)
class OrderItem:
    competition_id: str
    qty: int
    unit_price: int = 0
    ppt: int = 1
    title: str = ""
    currency: str = "gbp"
    skill_question_id: str = ""
    skill_question: str = ""
    selected_answer: str = ""
    tickets: tuple[int, ...] = ()

    @property
    def shortfall(self) -> int:
        return max(0, self.qty - len(self.tickets))

    @property
    def is_full(self) -> bool:
        return self.shortfall == 0

    def with_tickets(self, tickets) -> "OrderItem":
        return replace(self, tickets=tuple(int(n) for n in tickets))


@dataclass(frozen=True)
class Order:
    id: str
    email: str
    items: tuple[OrderItem, ...]
    amount_total: int
    currency: str = "gbp"
    status: str = PENDING
    user_id: str = ""
    name: str = ""
    phone: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    postcode: str = ""
    payment_provider: str = "mockpay"
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    points_applied: int = 0
    points_earned: int = 0
    created_at: float = 0.0
    confirmed_at: Optional[float] = None
    paid_at: Optional[float] = None

    @property
    def is_paid(self) -> bool:
        return self.status == PAID

    @property
    def is_fully_allocated(self) -> bool:
        return all(it.is_full for it in self.items)

    @property
    def first_name(self) -> str:
        return (self.name or "there").split(" ")[0]

    def tickets_by_competition(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for it in self.items:
            if it.tickets:
                counts[it.competition_id] = (
                    counts.get(it.competition_id, 0) + len(it.tickets)
                )
        return counts


def points_earned_for(order: Order) -> int:
    """Points credited on fulfillment: none when points were spent."""
    if order.points_applied > 0:
        return 0
    return sum(max(1, it.qty) * max(1, it.ppt) for it in order.items)


def order_to_dict(order: Order) -> dict:
    return {
        "order_id": order.id,
        "status": order.status,
        "email": order.email,
        "user_id": order.user_id,
        "amount_total": order.amount_total,
        "currency": order.currency,
        "payment_session_id": order.payment_session_id or "",
        "payment_intent_id": order.payment_intent_id or "",
        "points_applied": order.points_applied,
        "points_earned": order.points_earned,
        "created_at": to_iso(order.created_at),
        "paid_at": to_iso(order.paid_at),
        "items": [
            {
                "competition_id": it.competition_id,
                "title": it.title,
                "qty": it.qty,
                "unit_price": it.unit_price,
                "ppt": it.ppt,
                "tickets": list(it.tickets),
            }
            for it in order.items
        ],
    }
