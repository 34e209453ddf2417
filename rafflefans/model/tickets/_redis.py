# model/tickets/_redis.py
from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List
import redis.asyncio as redis

from ...errors import CollisionError
from ...helpers import now_ts, normalize_email
from ..domain import Ticket

logger = logging.getLogger(__name__)


# ---- keys
def k_numbers(cid: str) -> str: return f"tickets:{cid}"
def k_ticket(cid: str, n: int) -> str: return f"ticket:{cid}:{n}"


class TicketStore:
    """
    One sorted set per competition: member = ticket number, score =
    reservation time. ZADD NX is the atomic claim: it reports 1 for exactly
    one caller per (competition, number); every other caller gets 0.
    Metadata is written only by the winner.
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

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
        added = await self.r.zadd(
            k_numbers(ticket.competition_id),
            {str(ticket.number): ticket.created_at},
            nx=True,
        )
        if not added:
            logger.debug("ticket %s already taken in %s",
                         ticket.number, ticket.competition_id)
            raise CollisionError(ticket.competition_id, ticket.number)

        # mapping values should be strings for decode_responses=True
        await self.r.hset(k_ticket(ticket.competition_id, ticket.number),
                          mapping={
                              "competition_id": ticket.competition_id,
                              "competition_ref": ticket.competition_ref or "",
                              "number": str(ticket.number),
                              "email": ticket.email,
                              "created_at": str(ticket.created_at),
                          })
        return ticket

    async def count(self, competition_id: str) -> int:
        return int(await self.r.zcard(k_numbers(str(competition_id))))

    async def sample(self, competition_id: str, limit: int = 20) -> List[int]:
        members = await self.r.zrevrange(
            k_numbers(str(competition_id)), 0, max(0, limit - 1)
        )
        return [int(m) for m in members]

    async def numbers(self, competition_id: str) -> List[int]:
        members = await self.r.zrange(k_numbers(str(competition_id)), 0, -1)
        return sorted(int(m) for m in members)
