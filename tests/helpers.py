"""Test doubles and builders shared across test modules."""

from __future__ import annotations

from rafflefans.model.domain import Order, OrderItem
from rafflefans.notify import Notifier


class RecordingNotifier(Notifier):
    """Notifier that remembers what it was asked to send.

    `fail_times` makes the first N sends raise, to exercise retries.
    """

    def __init__(self, fail_times: int = 0) -> None:
        self.sent: list[Order] = []
        self.calls = 0
        self.fail_times = fail_times

    async def send_order_confirmation(self, order: Order) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError("email API down")
        self.sent.append(order)


def item(competition_id: str = "comp-1", qty: int = 1, **kw) -> OrderItem:
    kw.setdefault("unit_price", 99)
    return OrderItem(competition_id=competition_id, qty=qty, **kw)


def draft_order(
    *items: OrderItem,
    email: str = "buyer@example.com",
    user_id: str = "",
    points_applied: int = 0,
) -> Order:
    return Order(
        id="",
        email=email,
        items=tuple(items),
        amount_total=sum(it.qty * it.unit_price for it in items),
        user_id=user_id,
        name="Test Buyer",
        points_applied=points_applied,
    )
