"""Tests for confirmation rendering and delivery."""

import json

import httpx
import pytest

from rafflefans.model.domain import Order, OrderItem
from rafflefans.notify import (
    EmailNotifier,
    LoggingNotifier,
    new_notifier,
    render_confirmation,
)


@pytest.fixture
def order() -> Order:
    return Order(
        id="abcdef1234567890",
        email="ada@example.com",
        name="Ada Lovelace",
        amount_total=448,
        points_earned=7,
        items=(
            OrderItem(competition_id="comp-1", title="Tesla", qty=2,
                      unit_price=199, tickets=(1234, 7)),
            OrderItem(competition_id="comp-2", title="", qty=1,
                      unit_price=50),
        ),
    )


class TestRender:
    def test_subject_and_body(self, order):
        subject, body = render_confirmation(order)

        assert subject == "Your entries are confirmed - order abcdef12"
        assert body.startswith("Hi Ada,")
        assert "Tesla: 2 tickets x £1.99" in body
        assert "#1,234, #7" in body
        assert "comp-2: 1 ticket x £0.50" in body
        assert "Tickets will be allocated shortly." in body
        assert "Total paid: £4.48" in body
        assert "Points earned: 7" in body


class TestEmailNotifier:
    async def test_posts_to_email_api(self, order):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "em_1"})

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        ) as http:
            n = EmailNotifier(http, api_url="https://mail.test/emails",
                              api_key="k", sender="shop@test")
            await n.send_order_confirmation(order)

        assert len(seen) == 1
        req = seen[0]
        assert str(req.url) == "https://mail.test/emails"
        assert req.headers["authorization"] == "Bearer k"
        payload = json.loads(req.content)
        assert payload["to"] == ["ada@example.com"]
        assert payload["from"] == "shop@test"
        assert "#1,234" in payload["text"]

    async def test_error_status_raises(self, order):
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(503))
        ) as http:
            n = EmailNotifier(http, api_url="https://mail.test/emails",
                              api_key="k")
            with pytest.raises(httpx.HTTPStatusError):
                await n.send_order_confirmation(order)


class TestFactory:
    def test_without_api_key_only_logs(self):
        # EMAIL_API_KEY is blank in the test environment
        assert isinstance(new_notifier(None), LoggingNotifier)

    async def test_logging_notifier(self, order, caplog):
        caplog.set_level("INFO", logger="rafflefans.notify")
        await LoggingNotifier().send_order_confirmation(order)
        assert "abcdef1234567890" in caplog.text
