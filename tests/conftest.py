"""
Shared pytest fixtures for the rafflefans tests.

- SQL fixtures: a fresh aiosqlite database file per test, with the schema
  created, and every store built on top of it.
- Fulfillment fixtures: a coordinator wired to those stores, a fast
  side-effect dispatcher and a recording notifier.
- Order fixtures: a factory for pending orders with an attached payment
  session.

Configuration is read from the environment at import time, so the
environment is set up here before anything from rafflefans is imported.
"""

from __future__ import annotations

import os
import random
import tempfile
import uuid

_TMP = tempfile.mkdtemp(prefix="rafflefans-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/server.db"
os.environ["TICKETS_BACKEND"] = "pg"
os.environ["DB_GATE_LIMIT"] = "64"
os.environ["MOCK_SECRET"] = "test-secret"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["EMAIL_API_KEY"] = ""
os.environ["SKILL_GATE_ENABLED"] = "false"
os.environ["ENFORCE_CAPACITY"] = "false"
os.environ["SIDE_EFFECT_BACKOFF_SECONDS"] = "0.001"

import pytest  # noqa: E402

from rafflefans.allocation import AllocationEngine  # noqa: E402
from rafflefans.fulfillment import FulfillmentCoordinator  # noqa: E402
from rafflefans.infra.sql import make_async_engine  # noqa: E402
from rafflefans.model.customers import BasketStore, PointsLedger  # noqa: E402
from rafflefans.model.domain import Order, OrderItem  # noqa: E402
from rafflefans.model.inventory import CompetitionStore  # noqa: E402
from rafflefans.model.orders import OrderLedger  # noqa: E402
from rafflefans.model.orm import create_schema  # noqa: E402
from rafflefans.model.tickets._postgres import TicketStore  # noqa: E402
from rafflefans.sideeffects import SideEffectDispatcher  # noqa: E402
from tests.helpers import RecordingNotifier, draft_order  # noqa: E402


# ============================================================================
# SQL fixtures
# ============================================================================


@pytest.fixture
async def db(tmp_path):
    """(sessionmaker, gated) for a fresh database with the schema created."""
    engine, sessions, gated = make_async_engine(f"sqlite:///{tmp_path}/t.db")
    async with engine.begin() as conn:
        await create_schema(conn)
    yield sessions, gated
    await engine.dispose()


@pytest.fixture
def tickets(db) -> TicketStore:
    sessions, gated = db
    return TicketStore(sessions=sessions, gated=gated)


@pytest.fixture
def ledger(db) -> OrderLedger:
    sessions, gated = db
    return OrderLedger(sessions=sessions, gated=gated)


@pytest.fixture
def competitions(db) -> CompetitionStore:
    sessions, gated = db
    return CompetitionStore(sessions=sessions, gated=gated)


@pytest.fixture
def points(db) -> PointsLedger:
    sessions, gated = db
    return PointsLedger(sessions=sessions, gated=gated)


@pytest.fixture
def baskets(db) -> BasketStore:
    sessions, gated = db
    return BasketStore(sessions=sessions, gated=gated)


# ============================================================================
# Fulfillment fixtures
# ============================================================================


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def dispatcher():
    d = SideEffectDispatcher(max_retries=2, backoff_seconds=0.001)
    yield d
    await d.drain()


@pytest.fixture
def engine(tickets) -> AllocationEngine:
    return AllocationEngine(tickets, rng=random.Random(1234))


@pytest.fixture
def coordinator(
    ledger, engine, competitions, points, baskets, notifier, dispatcher,
) -> FulfillmentCoordinator:
    return FulfillmentCoordinator(
        ledger=ledger,
        engine=engine,
        competitions=competitions,
        points=points,
        baskets=baskets,
        notifier=notifier,
        dispatcher=dispatcher,
        number_space_size=10000,
        enforce_capacity=False,
    )


# ============================================================================
# Order fixtures
# ============================================================================


@pytest.fixture
def make_order(ledger):
    """Create a pending order with a payment session attached."""

    async def _make(*items: OrderItem, **kw) -> Order:
        order = await ledger.create(draft_order(*items, **kw))
        await ledger.attach_payment_session(
            order.id, f"mock_{uuid.uuid4().hex}"
        )
        return await ledger.get(order.id)

    return _make
