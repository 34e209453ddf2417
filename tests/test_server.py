"""
HTTP tests for the FastAPI service.

The app's startup and shutdown handlers are run by the `client` fixture; the
database is the temp-file SQLite set up in conftest.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from rafflefans import server
from rafflefans.events import (
    CHECKOUT_SESSION_COMPLETED,
    CHECKOUT_SESSION_EXPIRED,
    CHECKOUT_SESSION_FAILED,
)

ADMIN = {"x-admin-token": "test-admin-token"}


@pytest.fixture
async def client():
    await server._db_init()
    await server._http_client_start()
    await server._redis_start()
    await server._side_effects_start()
    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await server._side_effects_stop()
    await server._http_client_stop()
    await server._redis_stop()
    await server._db_stop()


def basket(email: str = "fan@example.com", user_id: str = "", qty: int = 2,
           competition: str = "comp-http") -> dict:
    return {
        "items": [{"id": competition, "title": "Bike", "qty": qty,
                   "price": 2.5, "pointsPerTicket": 1}],
        "customer": {"email": email, "userId": user_id},
    }


async def checkout(client, **kw) -> dict:
    r = await client.post("/api/checkout", json=basket(**kw))
    assert r.status_code == 200, r.text
    return r.json()


async def deliver(client, event: dict):
    body, headers = server.adapter.signed_payload(event)
    return await client.post("/payments/webhook", content=body,
                             headers=headers)


class TestCheckout:
    async def test_creates_pending_order(self, client):
        out = await checkout(client)

        assert out["amount"] == 500
        assert out["redirect_url"].startswith("/mockpay/mock_")
        r = await client.get(f"/api/orders/{out['order_id']}")
        assert r.status_code == 200
        assert r.json()["status"] == "pending"
        assert r.json()["items"][0]["tickets"] == []

    async def test_invalid_email(self, client):
        r = await client.post("/api/checkout", json=basket(email="nope"))

        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_CHECKOUT"

    async def test_unknown_order(self, client):
        r = await client.get("/api/orders/does-not-exist")

        assert r.status_code == 404
        assert r.json()["code"] == "ORDER_NOT_FOUND"


class TestWebhook:
    async def test_completed_then_duplicate(self, client):
        out = await checkout(client, qty=3)
        event = server.adapter.build_event(out["payment_session_id"],
                                           out["order_id"])

        first = await deliver(client, event)
        second = await deliver(client, event)

        assert first.status_code == 200
        assert first.json()["received"] is True
        assert first.json()["status"] == "fulfilled"
        assert second.status_code == 200
        assert second.json()["status"] == "already_fulfilled"
        order = (await client.get(f"/api/orders/{out['order_id']}")).json()
        assert order["status"] == "paid"
        assert len(set(order["items"][0]["tickets"])) == 3

    async def test_bad_signature(self, client):
        out = await checkout(client)
        body, headers = server.adapter.signed_payload(
            server.adapter.build_event(out["payment_session_id"],
                                       out["order_id"])
        )
        headers["x-mockpay-signature"] = "forged"

        r = await client.post("/payments/webhook", content=body,
                              headers=headers)

        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_EVENT"

    async def test_malformed_completed_event_is_acknowledged(self, client):
        r = await deliver(client, {"type": CHECKOUT_SESSION_COMPLETED,
                                   "data": {"payment_session_id": "mock_x"}})

        assert r.status_code == 200
        assert r.json()["received"] is True
        assert "note" in r.json()

    async def test_unknown_session_is_acknowledged(self, client):
        event = server.adapter.build_event("mock_" + uuid.uuid4().hex,
                                           "order-that-never-was")

        r = await deliver(client, event)

        assert r.status_code == 200
        assert r.json()["status"] == "order_not_found"

    async def test_failed_payment(self, client):
        out = await checkout(client)
        event = server.adapter.build_event(out["payment_session_id"],
                                           out["order_id"],
                                           kind=CHECKOUT_SESSION_FAILED)

        r = await deliver(client, event)

        assert r.json()["status"] == "failed"
        order = (await client.get(f"/api/orders/{out['order_id']}")).json()
        assert order["status"] == "failed"

    async def test_completed_after_failed_is_not_fulfilled(self, client):
        out = await checkout(client, qty=2)
        psid, oid = out["payment_session_id"], out["order_id"]
        await deliver(client, server.adapter.build_event(
            psid, oid, kind=CHECKOUT_SESSION_FAILED,
        ))

        r = await deliver(client, server.adapter.build_event(psid, oid))

        assert r.status_code == 200
        assert r.json()["status"] == "already_processed"
        assert r.json()["allocated"] == {}
        order = (await client.get(f"/api/orders/{oid}")).json()
        assert order["status"] == "failed"
        assert order["items"][0]["tickets"] == []

    async def test_expiry_after_confirmed_payment_is_ignored(self, client):
        out = await checkout(client, qty=3)
        oid = out["order_id"]
        ledger = server.order_ledger()
        order = await ledger.get(oid)
        # payment confirmed but only one ticket could be allocated
        await ledger.record_partial_allocation(
            oid, [order.items[0].with_tickets([7])], "pi_1",
        )

        r = await deliver(client, server.adapter.build_event(
            out["payment_session_id"], oid, kind=CHECKOUT_SESSION_EXPIRED,
        ))

        assert r.json()["status"] == "ignored"
        order = (await client.get(f"/api/orders/{oid}")).json()
        assert order["status"] == "pending"
        assert order["items"][0]["tickets"] == [7]

    async def test_malformed_closed_event_is_acknowledged(self, client):
        r = await deliver(client, {"type": CHECKOUT_SESSION_FAILED,
                                   "data": {"order_id": "o-1"}})

        assert r.status_code == 200
        assert "note" in r.json()

    async def test_other_event_types_are_ignored(self, client):
        r = await deliver(client, {"type": "customer.created", "data": {}})

        assert r.status_code == 200
        assert r.json() == {"received": True, "status": "ignored"}


class TestMockPayEmit:
    async def test_emits_duplicate_deliveries(self, client):
        # route the emitted webhook back into this app
        await server.app.state.http.aclose()
        server.app.state.http = AsyncClient(
            transport=ASGITransport(app=server.app)
        )
        out = await checkout(client, qty=2)

        r = await client.post(
            f"/mockpay/{out['payment_session_id']}/emit",
            json={"t": "completed", "copies": 3},
        )

        assert r.status_code == 200
        assert r.json()["delivered"] == 3
        order = (await client.get(f"/api/orders/{out['order_id']}")).json()
        assert order["status"] == "paid"
        assert len(order["items"][0]["tickets"]) == 2

    async def test_invalid_kind(self, client):
        out = await checkout(client)
        r = await client.post(f"/mockpay/{out['payment_session_id']}/emit",
                              json={"t": "refunded"})
        assert r.status_code == 400


class TestOrderListings:
    async def test_by_user_email_and_latest(self, client):
        user = "user-" + uuid.uuid4().hex[:8]
        email = f"{user}@example.com"
        a = await checkout(client, email=email, user_id=user)
        b = await checkout(client, email=email, user_id=user)

        by_user = (await client.get(f"/api/orders/by-user/{user}")).json()
        by_email = (await client.get(
            "/api/orders/by-email", params={"email": email.upper()},
        )).json()
        latest = (await client.get("/api/orders/latest")).json()

        ids = {a["order_id"], b["order_id"]}
        assert {o["order_id"] for o in by_user} == ids
        assert {o["order_id"] for o in by_email} == ids
        assert ids <= {o["order_id"] for o in latest}
        assert len(latest) <= 10

    async def test_by_email_requires_email(self, client):
        r = await client.get("/api/orders/by-email")
        assert r.status_code == 400


class TestDevEndpoints:
    async def test_skill_gate_flag(self, client):
        r = await client.get("/api/dev/skill-gate")
        assert r.json() == {"skillGateEnabled": False}

    async def test_ticket_count_and_sample(self, client):
        cid = "comp-" + uuid.uuid4().hex[:8]
        out = await checkout(client, qty=4, competition=cid)
        await deliver(client, server.adapter.build_event(
            out["payment_session_id"], out["order_id"],
        ))

        count = (await client.get("/api/dev/tickets/count",
                                  params={"competitionId": cid})).json()
        sample = (await client.get("/api/dev/tickets/sample",
                                   params={"competitionId": cid})).json()

        assert count == {"competitionId": cid, "count": 4}
        assert sample["count"] == 4
        assert len(set(sample["sample"])) == 4

    async def test_competition_id_required(self, client):
        r = await client.get("/api/dev/tickets/count")
        assert r.status_code == 400


class TestAdmin:
    async def test_requires_token(self, client):
        assert (await client.post("/api/admin/reconcile")).status_code == 401
        r = await client.get("/api/admin/timings",
                             headers={"x-admin-token": "wrong"})
        assert r.status_code == 401

    async def test_reconcile(self, client):
        r = await client.post("/api/admin/reconcile", headers=ADMIN)

        assert r.status_code == 200
        assert r.json()["count"] == len(r.json()["items"])

    async def test_timings(self, client):
        await checkout(client)

        r = await client.get("/api/admin/timings", headers=ADMIN)

        kinds = {t["kind"] for t in r.json()["items"]}
        assert "ledger.create" in kinds

    async def test_timings_reset(self, client):
        await checkout(client)

        first = await client.get("/api/admin/timings",
                                 params={"reset": "true"}, headers=ADMIN)
        second = await client.get("/api/admin/timings", headers=ADMIN)

        assert first.json()["items"]
        assert second.json()["items"] == []
