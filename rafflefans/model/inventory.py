# model/inventory.py
"""
Competition listings as seen by fulfillment: capacity and the sold counter.

The counter is only ever moved with a single relative UPDATE
(sold_tickets = sold_tickets + :n), never read-modify-write.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, text

from ..infra.sql import SqlStore
from . import orm

logger = logging.getLogger(__name__)


class CompetitionStore(SqlStore):
    async def create(
        self, competition_id: str, *, title: str = "", price: int = 0,
        total_tickets: int = 10000, status: str = orm.LIVE,
        max_per_user: int = 50, draw_date: str = "",
    ) -> None:
        async with self.write() as db:
            db.add(orm.Competition(
                id=competition_id,
                title=title,
                price=price,
                total_tickets=total_tickets,
                sold_tickets=0,
                max_per_user=max_per_user,
                status=status,
                draw_date=draw_date,
            ))

    async def get(self, competition_id: str) -> Optional[Dict[str, Any]]:
        async with self.read() as db:
            row = (await db.execute(
                select(orm.Competition)
                .where(orm.Competition.id == competition_id)
            )).scalar()
        if row is None:
            return None
        return {
            "id": row.id,
            "title": row.title,
            "price": row.price,
            "total_tickets": row.total_tickets,
            "sold_tickets": row.sold_tickets,
            "max_per_user": row.max_per_user,
            "status": row.status,
            "draw_date": row.draw_date,
        }

    async def increment_sold(self, competition_id: str, n: int) -> bool:
        """Add `n` to the sold counter. False if the listing is unknown."""
        if n <= 0:
            return True
        async with self.write() as db:
            res = await db.execute(text("""
                UPDATE competitions
                SET sold_tickets = sold_tickets + :n
                WHERE id = :cid
            """), {"n": int(n), "cid": competition_id})
        if res.rowcount == 0:
            # tickets for ad-hoc competition ids have no listing to count on
            logger.warning("sold counter: no competition %s (+%d skipped)",
                           competition_id, n)
            return False
        logger.info("sold counter: competition %s +%d", competition_id, n)
        return True
