from __future__ import annotations
import logging
from typing import Optional

import httpx
import redis.asyncio as redis
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse

from .checkout import CheckoutRequest, start_checkout
from .config import (
    ADMIN_TOKEN,
    DATABASE_URL,
    ENFORCE_CAPACITY,
    LOG_LEVEL,
    MAX_TICKETS_PER_DRAW,
    MOCK_WEBHOOK_URL,
    REDIS_MAX_CONN,
    REDIS_URL,
    SKILL_GATE_ENABLED,
)
from .allocation import AllocationEngine
from .errors import (
    DomainError, ErrorBody, ErrorCode, InvalidEvent, OrderNotFound,
)
from .events import (
    CHECKOUT_SESSION_COMPLETED,
    CHECKOUT_SESSION_EXPIRED,
    CHECKOUT_SESSION_FAILED,
)
from .fulfillment import FulfillmentCoordinator, reconcile_pending
from .helpers import ct_equal
from .infra import timings
from .infra.sql import make_async_engine
from .infra.timings import timeit
from .mockpay import MockPay, PaymentAdapter
from .model.customers import BasketStore, PointsLedger
from .model.domain import order_to_dict
from .model.inventory import CompetitionStore
from .model.orders import OrderLedger
from .model.orm import create_schema
from .model.tickets import BACKEND as TICKETS_BACKEND, new_store
from .notify import new_notifier
from .sideeffects import SideEffectDispatcher
from .skill import eligibility_policy

logger = logging.getLogger(__name__)

engine, SessionAsync, gated = make_async_engine(DATABASE_URL)

adapter: PaymentAdapter = MockPay()

app = FastAPI(
    title="RaffleFans",
    default_response_class=ORJSONResponse,
)

_STATUS_BY_CODE = {
    ErrorCode.INVALID_CHECKOUT: 400,
    ErrorCode.INVALID_EVENT: 400,
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.ALREADY_PROCESSED: 409,
}


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    body = ErrorBody.from_error(exc)
    return ORJSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 500),
        content={"error": body.message, "code": body.code,
                 "details": body.details},
    )


# ----------------------------
# Dependencies
# ----------------------------
def order_ledger() -> OrderLedger:
    return OrderLedger(sessions=SessionAsync, gated=gated)


def ticket_store():
    return new_store(sessions=SessionAsync, gated=gated,
                     r=getattr(app.state, "redis", None))


def coordinator(
    ledger: OrderLedger = Depends(order_ledger),
    tickets=Depends(ticket_store),
) -> FulfillmentCoordinator:
    return FulfillmentCoordinator(
        ledger=ledger,
        engine=AllocationEngine(tickets),
        competitions=CompetitionStore(sessions=SessionAsync, gated=gated),
        points=PointsLedger(sessions=SessionAsync, gated=gated),
        baskets=BasketStore(sessions=SessionAsync, gated=gated),
        notifier=app.state.notifier,
        dispatcher=app.state.dispatcher,
        eligibility=eligibility_policy(SKILL_GATE_ENABLED),
        number_space_size=MAX_TICKETS_PER_DRAW,
        enforce_capacity=ENFORCE_CAPACITY,
    )


def require_admin(request: Request) -> None:
    token = request.headers.get("x-admin-token", "")
    if not token or not ct_equal(token, ADMIN_TOKEN):
        raise HTTPException(401, detail="admin token required")


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _logging_start():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    S = "SQL" if TICKETS_BACKEND == "pg" else "Redis"
    logger.info("RaffleFans is starting up: ticket store=%s, skill gate=%s, "
                "capacity check=%s", S, SKILL_GATE_ENABLED, ENFORCE_CAPACITY)


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await create_schema(conn)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(
            max_connections=512, max_keepalive_connections=512
        ),
    )


@app.on_event("startup")
async def _redis_start():
    if TICKETS_BACKEND == "redis":
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _side_effects_start():
    app.state.dispatcher = SideEffectDispatcher()
    app.state.notifier = new_notifier(app.state.http)


# side effects may still be using the http client and the database
@app.on_event("shutdown")
async def _side_effects_stop():
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        await dispatcher.drain()


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Checkout
# ----------------------------
@app.post("/api/checkout")
async def create_checkout(
    payload: CheckoutRequest,
    ledger: OrderLedger = Depends(order_ledger),
):
    async with timeit("api.checkout"):
        return await start_checkout(payload, ledger, adapter)


# ----------------------------
# Webhook endpoint
# ----------------------------
@app.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    ledger: OrderLedger = Depends(order_ledger),
    fulfillment: FulfillmentCoordinator = Depends(coordinator),
):
    payload = await request.body()
    headers = dict(request.headers)

    # bad signature / unreadable body -> 400, the provider may retry
    event = adapter.verify_webhook(payload, headers)
    kind = adapter.event_kind(event)

    if kind == "completed":
        try:
            parsed = adapter.parse_completed(event)
        except InvalidEvent as e:
            # signed by the provider but unusable: retrying won't help
            logger.error("webhook: %s", e)
            return {"received": True, "note": "malformed event ignored"}
        result = await fulfillment.handle(parsed)
        return {"received": True, **result.to_dict()}

    if kind in ("failed", "expired"):
        try:
            closed = adapter.parse_closed(event)
        except InvalidEvent as e:
            logger.error("webhook: %s", e)
            return {"received": True, "note": "malformed event ignored"}
        try:
            order = await ledger.load_by_payment_session_id(
                closed.payment_session_id
            )
        except OrderNotFound:
            logger.warning("webhook: %s for unknown session %s",
                           event.get("type"), closed.payment_session_id)
            return {"received": True, "status": "order_not_found"}
        # false for paid orders and for confirmed ones awaiting tickets
        changed = await ledger.mark_failed(order.id)
        logger.info("webhook: order %s session %s by event %s "
                    "(marked failed=%s)", order.id,
                    "expired" if closed.expired else "failed",
                    closed.idempotency_key or "-", changed)
        return {"received": True, "status": "failed" if changed else
                "ignored", "order_id": order.id}

    logger.info("webhook: ignoring event type %r", event.get("type"))
    return {"received": True, "status": "ignored"}


# ----------------------------
# API: Orders
# ----------------------------
# fixed paths before /api/orders/{order_id}
@app.get("/api/orders/latest")
async def latest_orders(ledger: OrderLedger = Depends(order_ledger)):
    return [order_to_dict(o) for o in await ledger.list_recent(limit=10)]


@app.get("/api/orders/by-email")
async def orders_by_email(
    email: str = "", ledger: OrderLedger = Depends(order_ledger),
):
    email = email.strip()
    if not email:
        raise HTTPException(400, detail="email query param required")
    return [order_to_dict(o) for o in await ledger.list_by_email(email)]


@app.get("/api/orders/by-user/{user_id}")
async def orders_by_user(
    user_id: str, ledger: OrderLedger = Depends(order_ledger),
):
    user_id = user_id.strip()
    if not user_id:
        raise HTTPException(400, detail="userId required")
    return [order_to_dict(o) for o in await ledger.list_by_user(user_id)]


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, ledger: OrderLedger = Depends(order_ledger)):
    async with timeit("api.get_order"):
        # OrderNotFound -> 404; the success page keeps polling
        order = await ledger.get(order_id)
    return order_to_dict(order)


# ----------------------------
# Dev helpers
# ----------------------------
@app.get("/api/dev/skill-gate")
async def dev_skill_gate():
    return {"skillGateEnabled": SKILL_GATE_ENABLED}


def _competition_param(competitionId: str = "") -> str:
    cid = competitionId.strip()
    if not cid:
        raise HTTPException(400, detail="competitionId query param required")
    return cid


@app.get("/api/dev/tickets/count")
async def dev_tickets_count(
    cid: str = Depends(_competition_param), tickets=Depends(ticket_store),
):
    return {"competitionId": cid, "count": await tickets.count(cid)}


@app.get("/api/dev/tickets/sample")
async def dev_tickets_sample(
    cid: str = Depends(_competition_param), tickets=Depends(ticket_store),
):
    sample = await tickets.sample(cid, limit=20)
    return {"competitionId": cid, "count": len(sample), "sample": sample}


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/reconcile", dependencies=[Depends(require_admin)])
async def admin_reconcile(
    limit: int = 100,
    ledger: OrderLedger = Depends(order_ledger),
    fulfillment: FulfillmentCoordinator = Depends(coordinator),
):
    results = await reconcile_pending(ledger, fulfillment,
                                      limit=max(1, min(limit, 500)))
    return {"count": len(results), "items": [r.to_dict() for r in results]}


@app.get("/api/admin/timings", dependencies=[Depends(require_admin)])
async def admin_timings(reset: bool = False):
    items = timings.summary()
    if reset:
        timings.reset()
    return {"items": items}


# ----------------------------
# MockPay: emit a signed event to our own webhook
# ----------------------------
_KINDS = {
    "completed": CHECKOUT_SESSION_COMPLETED,
    "failed": CHECKOUT_SESSION_FAILED,
    "expired": CHECKOUT_SESSION_EXPIRED,
}


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str,
    payload: dict,
    ledger: OrderLedger = Depends(order_ledger),
):
    kind = payload.get("t", "completed")
    if kind not in _KINDS:
        raise HTTPException(400, detail="invalid kind")
    copies = max(1, min(int(payload.get("copies", 1)), 10))

    order = await ledger.load_by_payment_session_id(psid)
    event = adapter.build_event(
        psid, order.id, kind=_KINDS[kind],
        customer_email=order.email, user_id=order.user_id or None,
    )
    body, headers = adapter.signed_payload(event)

    client_http: httpx.AsyncClient = app.state.http
    delivered = 0
    # same event, same idempotency key: simulates provider redelivery
    for _ in range(copies):
        try:
            r = await client_http.post(MOCK_WEBHOOK_URL, content=body,
                                       headers=headers)
            delivered += int(r.status_code == 200)
        except httpx.HTTPError as e:
            # the user can simply emit again
            logger.warning("mockpay: webhook delivery failed: %s", e)
    return {"order_id": order.id, "type": event["type"],
            "sent": copies, "delivered": delivered}


def main(host: str = "0.0.0.0", port: Optional[int] = None) -> None:
    uvicorn.run(app, host=host, port=port or 8000)
