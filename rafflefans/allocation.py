"""
Random ticket allocation.

Candidates are drawn uniformly from [1, number_space] and claimed through the
ticket store; a collision just means "draw again". The loop is bounded by
quantity * retry_multiplier draws, so a nearly sold-out number space fails
fast with AllocationExhausted instead of spinning.

Numbers already claimed by a call that runs out of budget stay claimed: the
store is append-only, and the caller records them so a later retry only tops
up the remainder.
"""
from __future__ import annotations
import logging
import random
from typing import Optional, Protocol

from .config import ALLOCATION_RETRY_MULTIPLIER, MAX_TICKETS_PER_DRAW
from .errors import AllocationExhausted, CollisionError
from .infra.timings import timeit
from .model.domain import Ticket

logger = logging.getLogger(__name__)


class NumberStore(Protocol):
    """What allocation and capacity checks need from a ticket store."""

    async def reserve(self, competition_id: str, number: int,
                      metadata: Optional[dict] = None) -> Ticket: ...

    async def count(self, competition_id: str) -> int: ...


class AllocationEngine:
    def __init__(
        self,
        store: NumberStore,
        *,
        retry_multiplier: int = ALLOCATION_RETRY_MULTIPLIER,
        rng: Optional[random.Random] = None,
    ) -> None:
        if retry_multiplier < 1:
            raise ValueError("retry_multiplier must be >= 1")
        self.store = store
        self.retry_multiplier = retry_multiplier
        # SystemRandom by default: draws must not be predictable
        self.rng = rng or random.SystemRandom()

    async def allocate(
        self,
        competition_id: str,
        quantity: int,
        number_space_size: int = MAX_TICKETS_PER_DRAW,
        purchaser_email: str = "",
        competition_ref: Optional[str] = None,
    ) -> list[int]:
        """Reserve `quantity` distinct numbers in `competition_id`.

        Raises:
            AllocationExhausted: the draw budget ran out first. The exception
                carries the numbers that were reserved before it did.
        """
        if quantity <= 0:
            return []
        if number_space_size < 1:
            raise ValueError("number_space_size must be >= 1")

        competition_id = str(competition_id)
        max_tries = quantity * self.retry_multiplier
        metadata = {"email": purchaser_email, "competition_ref": competition_ref}
        assigned: list[int] = []
        tries = 0
        collisions = 0

        logger.info(
            "allocating %d ticket(s) for competition=%s (space=%d) email=%s",
            quantity, competition_id, number_space_size, purchaser_email,
        )
        async with timeit("allocation.allocate"):
            while len(assigned) < quantity and tries < max_tries:
                tries += 1
                n = self.rng.randint(1, number_space_size)
                try:
                    await self.store.reserve(competition_id, n, metadata)
                except CollisionError:
                    collisions += 1
                    continue
                assigned.append(n)

        if len(assigned) < quantity:
            logger.error(
                "allocation exhausted for competition=%s: %d of %d after "
                "%d draws (%d collisions)",
                competition_id, len(assigned), quantity, tries, collisions,
            )
            raise AllocationExhausted(competition_id, quantity, assigned)

        logger.info("allocated tickets for competition=%s -> %s",
                    competition_id, assigned)
        return assigned
