"""
Order ledger.

The only write that moves an order out of `pending` is
`mark_paid_if_pending`: one transaction whose first statement is the
conditional UPDATE ... WHERE status='pending'. A second delivery of the same
payment event sees rowcount 0 and gets AlreadyProcessed, so side effects can
hang off the success path only.
"""
from __future__ import annotations
import logging
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AlreadyProcessed, OrderNotFound
from ..helpers import now_ts
from ..infra.sql import SqlStore
from ..infra.timings import timeit
from . import orm
from .domain import Order, OrderItem

logger = logging.getLogger(__name__)


def _item_from_row(row: orm.OrderItem) -> OrderItem:
    return OrderItem(
        competition_id=row.competition_id,
        qty=row.qty,
        unit_price=row.unit_price,
        ppt=row.ppt,
        title=row.title,
        currency=row.currency,
        skill_question_id=row.skill_question_id,
        skill_question=row.skill_question,
        selected_answer=row.selected_answer,
        tickets=tuple(int(n) for n in (row.tickets or [])),
    )


def _order_from_rows(row: orm.Order, items: Iterable[orm.OrderItem]) -> Order:
    return Order(
        id=row.id,
        email=row.email,
        items=tuple(_item_from_row(it) for it in items),
        amount_total=row.amount_total,
        currency=row.currency,
        status=row.status,
        user_id=row.user_id,
        name=row.name,
        phone=row.phone,
        address1=row.address1,
        address2=row.address2,
        city=row.city,
        postcode=row.postcode,
        payment_provider=row.payment_provider,
        payment_session_id=row.payment_session_id,
        payment_intent_id=row.payment_intent_id,
        points_applied=row.points_applied,
        points_earned=row.points_earned,
        created_at=row.created_at,
        confirmed_at=row.confirmed_at,
        paid_at=row.paid_at,
    )


class OrderLedger(SqlStore):
    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def _load(self, db: AsyncSession, where) -> Optional[Order]:
        row = (await db.execute(select(orm.Order).where(where))).scalar()
        if row is None:
            return None
        items = (await db.execute(
            select(orm.OrderItem)
            .where(orm.OrderItem.order_id == row.id)
            .order_by(orm.OrderItem.position)
        )).scalars().all()
        return _order_from_rows(row, items)

    async def get(self, order_id: str) -> Order:
        async with self.read() as db:
            order = await self._load(db, orm.Order.id == order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def load_by_payment_session_id(self, session_id: str) -> Order:
        if not session_id:
            raise OrderNotFound("")
        async with self.read() as db:
            order = await self._load(
                db, orm.Order.payment_session_id == session_id
            )
        if order is None:
            raise OrderNotFound(session_id)
        return order

    async def _list(self, where, limit: int) -> List[Order]:
        stmt = select(orm.Order.id).order_by(
            orm.Order.created_at.desc()
        ).limit(max(1, min(int(limit), 500)))
        if where is not None:
            stmt = stmt.where(where)
        out = []
        async with self.read() as db:
            for oid in (await db.execute(stmt)).scalars().all():
                order = await self._load(db, orm.Order.id == oid)
                if order is not None:
                    out.append(order)
        return out

    async def list_recent(self, limit: int = 10) -> List[Order]:
        return await self._list(None, limit)

    async def list_by_user(self, user_id: str, limit: int = 50) -> List[Order]:
        return await self._list(orm.Order.user_id == user_id, limit)

    async def list_by_email(self, email: str, limit: int = 20) -> List[Order]:
        # emails are stored lower-cased by checkout
        return await self._list(
            orm.Order.email == email.strip().lower(), limit
        )

    async def list_pending(
        self, limit: int = 100, confirmed_only: bool = True
    ) -> List[Order]:
        where = orm.Order.status == orm.PENDING
        if confirmed_only:
            where = where & orm.Order.confirmed_at.is_not(None)
        return await self._list(where, limit)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    async def create(self, draft: Order) -> Order:
        """Persist a new order; it always starts pending with no tickets."""
        order_id = draft.id or uuid.uuid4().hex
        async with timeit("ledger.create"), self.write() as db:
            db.add(orm.Order(
                id=order_id,
                user_id=draft.user_id,
                email=draft.email,
                name=draft.name,
                phone=draft.phone,
                address1=draft.address1,
                address2=draft.address2,
                city=draft.city,
                postcode=draft.postcode,
                amount_total=draft.amount_total,
                currency=draft.currency,
                payment_provider=draft.payment_provider,
                payment_session_id=draft.payment_session_id,
                payment_intent_id=draft.payment_intent_id,
                status=orm.PENDING,
                points_applied=max(0, draft.points_applied),
                points_earned=0,
                created_at=draft.created_at or now_ts(),
            ))
            # parent row first: order_items references orders
            await db.flush()
            db.add_all(
                orm.OrderItem(
                    order_id=order_id,
                    position=pos,
                    competition_id=it.competition_id,
                    title=it.title,
                    qty=it.qty,
                    unit_price=it.unit_price,
                    currency=it.currency,
                    ppt=it.ppt,
                    skill_question_id=it.skill_question_id,
                    skill_question=it.skill_question,
                    selected_answer=it.selected_answer,
                    tickets=[],
                )
                for pos, it in enumerate(draft.items)
            )
        logger.info("order %s created pending (%d item(s))",
                    order_id, len(draft.items))
        return await self.get(order_id)

    async def attach_payment_session(
        self, order_id: str, session_id: str
    ) -> None:
        async with self.write() as db:
            res = await db.execute(
                update(orm.Order)
                .where(orm.Order.id == order_id)
                .values(payment_session_id=session_id)
            )
        if res.rowcount == 0:
            raise OrderNotFound(order_id)

    async def _write_items(
        self, db: AsyncSession, order_id: str, items: Iterable[OrderItem]
    ) -> None:
        for pos, it in enumerate(items):
            await db.execute(
                update(orm.OrderItem)
                .where(orm.OrderItem.order_id == order_id)
                .where(orm.OrderItem.position == pos)
                .values(tickets=list(it.tickets))
            )

    async def _update_pending(self, db: AsyncSession, order_id: str,
                              **values) -> bool:
        res = await db.execute(
            update(orm.Order)
            .where(orm.Order.id == order_id)
            .where(orm.Order.status == orm.PENDING)
            .values(**values)
        )
        return res.rowcount == 1

    async def mark_paid_if_pending(
        self,
        order_id: str,
        items: Iterable[OrderItem],
        points_earned: int,
        payment_intent_id: Optional[str] = None,
    ) -> Order:
        """Atomically flip pending -> paid with the allocated tickets.

        Raises:
            AlreadyProcessed: the order is no longer pending.
            OrderNotFound: there is no such order.
        """
        values = dict(
            status=orm.PAID,
            points_earned=max(0, int(points_earned)),
            paid_at=now_ts(),
        )
        if payment_intent_id:
            values["payment_intent_id"] = payment_intent_id

        status = None
        async with timeit("ledger.mark_paid"), self.write() as db:
            # the write comes first: the row lock it takes is the
            # idempotency guard
            updated = await self._update_pending(db, order_id, **values)
            if updated:
                await self._write_items(db, order_id, items)
            else:
                status = (await db.execute(
                    select(orm.Order.status).where(orm.Order.id == order_id)
                )).scalar()

        if not updated:
            if status is None:
                raise OrderNotFound(order_id)
            raise AlreadyProcessed(order_id, status)
        return await self.get(order_id)

    async def record_partial_allocation(
        self,
        order_id: str,
        items: Iterable[OrderItem],
        payment_intent_id: Optional[str] = None,
    ) -> bool:
        """Save short ticket lists on a still-pending order.

        Marks the order as payment-confirmed so reconciliation can find it.
        Returns False if the order already left pending.
        """
        values = dict(confirmed_at=now_ts())
        if payment_intent_id:
            values["payment_intent_id"] = payment_intent_id
        async with self.write() as db:
            if not await self._update_pending(db, order_id, **values):
                return False
            await self._write_items(db, order_id, items)
        return True

    async def mark_failed(self, order_id: str) -> bool:
        """pending -> failed, unless a payment was already confirmed.

        A confirmed order left short by allocation stays pending so a
        redelivery or reconciliation can still top it up.
        """
        async with self.write() as db:
            res = await db.execute(
                update(orm.Order)
                .where(orm.Order.id == order_id)
                .where(orm.Order.status == orm.PENDING)
                .where(orm.Order.confirmed_at.is_(None))
                .values(status=orm.FAILED)
            )
        return res.rowcount == 1
