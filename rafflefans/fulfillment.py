"""
Order fulfillment.

Turns a confirmed checkout session into a paid order with allocated tickets:

    pending --(first confirmed delivery)--> paid
    paid    --(any later delivery)--------> paid   (no-op)
    failed  --(any delivery)--------------> failed (no-op, nothing reserved)

The conditional paid transition in the ledger is the only guard that matters
for exactly-once side effects: several deliveries of the same event may
allocate concurrently, but only the one whose transition succeeds goes on to
touch counters, points, the basket and the notifier.

Every outcome is reported as a FulfillmentResult; the webhook acknowledges
all of them so the provider never redelivers forever on a bug we can't fix
by retrying.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .allocation import AllocationEngine
from .config import ENFORCE_CAPACITY, MAX_TICKETS_PER_DRAW
from .errors import AllocationExhausted, AlreadyProcessed, OrderNotFound
from .events import CheckoutSessionCompleted
from .infra.timings import timeit
from .model.customers import BasketStore, PointsLedger
from .model.domain import Order, OrderItem, points_earned_for
from .model import orm
from .model.inventory import CompetitionStore
from .model.orders import OrderLedger
from .notify import Notifier
from .sideeffects import SideEffectDispatcher
from .skill import Eligibility, always_eligible

logger = logging.getLogger(__name__)


class FulfillmentStatus(Enum):
    FULFILLED = "fulfilled"
    ALREADY_FULFILLED = "already_fulfilled"
    ALREADY_PROCESSED = "already_processed"
    ORDER_NOT_FOUND = "order_not_found"
    ALLOCATION_EXHAUSTED = "allocation_exhausted"
    ERROR = "error"


@dataclass
class FulfillmentResult:
    status: FulfillmentStatus
    order_id: Optional[str] = None
    # numbers reserved by this call, per competition
    allocated: Dict[str, List[int]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "order_id": self.order_id,
            "allocated": self.allocated,
        }


class FulfillmentCoordinator:
    def __init__(
        self,
        *,
        ledger: OrderLedger,
        engine: AllocationEngine,
        competitions: CompetitionStore,
        points: PointsLedger,
        baskets: BasketStore,
        notifier: Notifier,
        dispatcher: SideEffectDispatcher,
        eligibility: Eligibility = always_eligible,
        number_space_size: int = MAX_TICKETS_PER_DRAW,
        enforce_capacity: bool = ENFORCE_CAPACITY,
    ) -> None:
        self.ledger = ledger
        self.engine = engine
        self.competitions = competitions
        self.points = points
        self.baskets = baskets
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.eligibility = eligibility
        self.number_space_size = number_space_size
        self.enforce_capacity = enforce_capacity

    async def handle(self, event: CheckoutSessionCompleted) -> FulfillmentResult:
        """Process one delivery of a confirmed-payment event."""
        try:
            async with timeit("fulfillment.handle"):
                return await self._fulfill(event)
        except Exception:
            # the order stays pending; a redelivery or reconcile() retries
            logger.exception("fulfillment failed for session=%s order=%s",
                             event.payment_session_id, event.order_id)
            return FulfillmentResult(FulfillmentStatus.ERROR, event.order_id)

    async def _resolve(self, event: CheckoutSessionCompleted) -> Order:
        try:
            return await self.ledger.load_by_payment_session_id(
                event.payment_session_id
            )
        except OrderNotFound:
            pass
        # fall back to the correlation id, but never onto an order that is
        # linked to a different session
        order = await self.ledger.get(event.order_id)
        if order.payment_session_id not in (None, "",
                                            event.payment_session_id):
            raise OrderNotFound(event.payment_session_id)
        return order

    async def _fulfill(
        self, event: CheckoutSessionCompleted
    ) -> FulfillmentResult:
        try:
            order = await self._resolve(event)
        except OrderNotFound:
            logger.warning("no order for session=%s order_id=%s; event "
                           "acknowledged", event.payment_session_id,
                           event.order_id)
            return FulfillmentResult(FulfillmentStatus.ORDER_NOT_FOUND,
                                     event.order_id)

        if order.is_paid and order.is_fully_allocated:
            logger.info("order %s already paid with tickets", order.id)
            return FulfillmentResult(FulfillmentStatus.ALREADY_FULFILLED,
                                     order.id)
        if order.status not in (orm.PENDING, orm.PAID):
            # a closed order never gets tickets; reserving any would orphan them
            logger.info("order %s is %s; event %s ignored", order.id,
                        order.status, event.idempotency_key or "-")
            return FulfillmentResult(FulfillmentStatus.ALREADY_PROCESSED,
                                     order.id)

        email = (event.customer_email or order.email or "").strip().lower()
        items: List[OrderItem] = []
        allocated: Dict[str, List[int]] = {}
        short = False

        for idx, item in enumerate(order.items):
            new = await self._allocate_item(order, idx, item, email)
            if new is None:
                items.append(item)
                continue
            numbers, exhausted = new
            short = short or exhausted
            if numbers:
                allocated.setdefault(item.competition_id, []).extend(numbers)
            items.append(item.with_tickets(list(item.tickets) + numbers))

        if short:
            saved = await self.ledger.record_partial_allocation(
                order.id, items, event.payment_intent_id
            )
            logger.error(
                "ALERT order %s left pending with short items (recorded=%s); "
                "needs reconciliation", order.id, saved,
            )
            return FulfillmentResult(FulfillmentStatus.ALLOCATION_EXHAUSTED,
                                     order.id, allocated)

        points_earned = points_earned_for(order)
        try:
            paid = await self.ledger.mark_paid_if_pending(
                order.id, items, points_earned, event.payment_intent_id
            )
        except AlreadyProcessed as e:
            if allocated:
                # another delivery won the race; these numbers are orphaned
                logger.warning("order %s already %s; orphaned tickets %s",
                               order.id, e.status, allocated)
            else:
                logger.info("order %s already %s", order.id, e.status)
            return FulfillmentResult(FulfillmentStatus.ALREADY_PROCESSED,
                                     order.id, allocated)

        logger.info("order %s paid by event %s; tickets allocated %s, "
                    "points earned %d", paid.id,
                    event.idempotency_key or "-", allocated,
                    paid.points_earned)
        self._dispatch_side_effects(paid, event)
        return FulfillmentResult(FulfillmentStatus.FULFILLED, paid.id,
                                 allocated)

    async def _allocate_item(
        self, order: Order, idx: int, item: OrderItem, email: str
    ) -> Optional[tuple[List[int], bool]]:
        """Top up one item. None when the item is skipped."""
        cid = (item.competition_id or "").strip()
        if not cid or cid == "unknown":
            logger.warning("order %s item[%d] skipped: no competition id",
                           order.id, idx)
            return None
        if item.qty <= 0:
            logger.warning("order %s item[%d] skipped: qty=%d",
                           order.id, idx, item.qty)
            return None
        if not self.eligibility(item):
            logger.info("order %s item[%d] skipped: skill answer incorrect",
                        order.id, idx)
            return None

        need = item.shortfall
        if need == 0:
            return [], False

        if self.enforce_capacity:
            remaining = await self._remaining_capacity(cid)
            if remaining is not None and remaining < need:
                logger.error("order %s item[%d]: competition %s has %d "
                             "ticket(s) left, %d needed", order.id, idx, cid,
                             remaining, need)
                return [], True

        try:
            numbers = await self.engine.allocate(
                cid, need, self.number_space_size, email
            )
        except AllocationExhausted as e:
            logger.error("order %s item[%d]: %s", order.id, idx, e)
            return list(e.allocated), True
        return numbers, False

    async def _remaining_capacity(self, competition_id: str) -> Optional[int]:
        comp = await self.competitions.get(competition_id)
        if comp is None:
            return None
        taken = await self.engine.store.count(competition_id)
        return max(0, comp["total_tickets"] - taken)

    def _dispatch_side_effects(
        self, order: Order, event: CheckoutSessionCompleted
    ) -> None:
        # each one independent: none waits on or undoes another
        for cid, n in order.tickets_by_competition().items():
            self.dispatcher.dispatch(
                "competition.increment_sold",
                self.competitions.increment_sold, cid, n,
            )

        user_id = (order.user_id or event.user_id or "").strip()
        if user_id:
            self.dispatcher.dispatch(
                "basket.mark_checked_out",
                self.baskets.mark_checked_out, user_id,
            )
            if order.points_applied or order.points_earned:
                self.dispatcher.dispatch(
                    "points.apply_order_points",
                    self.points.apply_order_points,
                    user_id, order.points_applied, order.points_earned,
                )

        self.dispatcher.dispatch(
            "notify.order_confirmation",
            self.notifier.send_order_confirmation, order,
        )


async def reconcile_pending(
    ledger: OrderLedger,
    coordinator: FulfillmentCoordinator,
    limit: int = 100,
) -> List[FulfillmentResult]:
    """Retry fulfillment for confirmed orders that were left pending."""
    results = []
    for order in await ledger.list_pending(limit=limit):
        if not order.payment_session_id:
            logger.warning("reconcile: order %s has no payment session",
                           order.id)
            continue
        event = CheckoutSessionCompleted(
            payment_session_id=order.payment_session_id,
            order_id=order.id,
            payment_intent_id=order.payment_intent_id,
            customer_email=order.email,
            user_id=order.user_id or None,
        )
        result = await coordinator.handle(event)
        logger.info("reconcile: order %s -> %s", order.id,
                    result.status.value)
        results.append(result)
    return results
