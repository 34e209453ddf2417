# model/tickets/__init__.py
from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
import redis.asyncio as redis

from ...config import TICKETS_BACKEND as BACKEND
from ...infra.sql import Gated

if BACKEND == "redis":
    from ._redis import TicketStore as _TicketStore
else:
    from ._postgres import TicketStore as _TicketStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, sessions: Optional[async_sessionmaker] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "TicketStore(redis) requires r=redis.Redis"
            )
        return _TicketStore(r=r)
    else:
        if sessions is None:
            raise RuntimeError(
                "TicketStore(pg) requires sessions=async_sessionmaker"
            )
        if gated is None:
            raise RuntimeError(
                "TicketStore(pg) requires gated=Gated"
            )
        return _TicketStore(sessions=sessions, gated=gated)


# Also export the selected class name for typing/imports
TicketStore = _TicketStore
__all__ = ["TicketStore", "new_store", "BACKEND"]
