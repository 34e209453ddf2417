# model/customers.py
"""
Customer-owned state touched by fulfillment: the points balance and the
saved basket.
"""
from __future__ import annotations
import logging
from typing import Any, List, Optional

from sqlalchemy import select, text

from ..helpers import now_ts, normalize_email
from ..infra.sql import SqlStore
from . import orm

logger = logging.getLogger(__name__)


class PointsLedger(SqlStore):
    async def create_user(
        self, user_id: str, email: str, *, name: str = "", points: int = 0
    ) -> None:
        async with self.write() as db:
            db.add(orm.User(
                id=user_id,
                email=normalize_email(email),
                name=name,
                points=max(0, points),
            ))

    async def balance(self, user_id: str) -> Optional[int]:
        async with self.read() as db:
            return (await db.execute(
                select(orm.User.points).where(orm.User.id == user_id)
            )).scalar()

    async def apply_order_points(
        self, user_id: str, spent: int, earned: int
    ) -> bool:
        """Debit `spent` then credit `earned` in one statement.

        The balance never drops below zero.
        """
        spent, earned = max(0, int(spent)), max(0, int(earned))
        if not spent and not earned:
            return True
        async with self.write() as db:
            res = await db.execute(text("""
                UPDATE users
                SET points = (
                      CASE WHEN points - :spent < 0 THEN 0
                           ELSE points - :spent END
                    ) + :earned,
                    points_updated_at = :now
                WHERE id = :uid
            """), {
                "spent": spent,
                "earned": earned,
                "now": now_ts(),
                "uid": user_id,
            })
        if res.rowcount == 0:
            logger.warning("points: no user %s (-%d/+%d skipped)",
                           user_id, spent, earned)
            return False
        logger.info("points: user %s -%d +%d", user_id, spent, earned)
        return True


class BasketStore(SqlStore):
    async def save(
        self, user_id: str, email: str, items: List[Any],
        first_name: str = "",
    ) -> None:
        # a changed basket starts over as not checked out
        async with self.write() as db:
            await db.merge(orm.SavedBasket(
                user_id=user_id,
                email=normalize_email(email),
                first_name=first_name,
                items=list(items),
                saved_at=now_ts(),
                checked_out=False,
            ))

    async def is_checked_out(self, user_id: str) -> Optional[bool]:
        async with self.read() as db:
            return (await db.execute(
                select(orm.SavedBasket.checked_out)
                .where(orm.SavedBasket.user_id == user_id)
            )).scalar()

    async def mark_checked_out(self, user_id: str) -> bool:
        async with self.write() as db:
            res = await db.execute(text("""
                UPDATE saved_baskets SET checked_out = :yes
                WHERE user_id = :uid
            """), {"yes": True, "uid": user_id})
        return res.rowcount == 1
