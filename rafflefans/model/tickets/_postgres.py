"""
SQL ticket store.

Uniqueness lives in the database: `tickets` carries
UNIQUE (competition_id, number), and a reservation is a single
INSERT ... ON CONFLICT DO NOTHING RETURNING. Two concurrent inserts of the
same pair contend only on that index entry; unrelated pairs never wait on
each other. Works on PostgreSQL and SQLite >= 3.35.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from ...errors import CollisionError
from ...helpers import now_ts, normalize_email
from ...infra.sql import SqlStore
from ..domain import Ticket

logger = logging.getLogger(__name__)

_RESERVE = text("""
    INSERT INTO tickets(competition_id, number, competition_ref, email,
                        created_at)
    VALUES (:cid, :number, :ref, :email, :created_at)
    ON CONFLICT (competition_id, number) DO NOTHING
    RETURNING number
""")


class TicketStore(SqlStore):
    async def reserve(
        self, competition_id: str, number: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Ticket:
        meta = metadata or {}
        ticket = Ticket(
            competition_id=str(competition_id),
            number=int(number),
            competition_ref=meta.get("competition_ref"),
            email=normalize_email(meta.get("email")),
            created_at=now_ts(),
        )
        async with self.write() as db:
            row = (await db.execute(_RESERVE, {
                "cid": ticket.competition_id,
                "number": ticket.number,
                "ref": ticket.competition_ref,
                "email": ticket.email,
                "created_at": ticket.created_at,
            })).first()
        if row is None:
            logger.debug("ticket %s already taken in %s",
                         ticket.number, ticket.competition_id)
            raise CollisionError(ticket.competition_id, ticket.number)
        return ticket

    async def count(self, competition_id: str) -> int:
        async with self.read() as db:
            n = (await db.execute(
                text("SELECT COUNT(*) FROM tickets WHERE competition_id=:cid"),
                {"cid": str(competition_id)},
            )).scalar_one()
        return int(n)

    async def sample(self, competition_id: str, limit: int = 20) -> List[int]:
        # most recent first
        async with self.read() as db:
            rows = (await db.execute(text("""
                SELECT number FROM tickets WHERE competition_id=:cid
                ORDER BY created_at DESC, id DESC LIMIT :lim
            """), {"cid": str(competition_id), "lim": int(limit)})).all()
        return [int(r[0]) for r in rows]

    async def numbers(self, competition_id: str) -> List[int]:
        async with self.read() as db:
            rows = (await db.execute(text("""
                SELECT number FROM tickets WHERE competition_id=:cid
                ORDER BY number
            """), {"cid": str(competition_id)})).all()
        return [int(r[0]) for r in rows]
