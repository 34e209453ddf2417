import asyncio
import logging
import sys

from sqlalchemy.exc import IntegrityError

from rafflefans.config import DATABASE_URL
from rafflefans.infra.sql import make_async_engine
from rafflefans.model.customers import PointsLedger
from rafflefans.model.inventory import CompetitionStore
from rafflefans.model.orm import create_schema

logger = logging.getLogger("init_db")

# Demo listings
COMPETITIONS = [
    # id, title, price (pence), total_tickets
    ("comp-1", "Win a Tesla Model 3", 199, 10_000),
    ("comp-2", "£5,000 Tax-Free Cash", 99, 5_000),
    ("comp-3", "PlayStation 5 Bundle", 49, 2_500),
]

# Demo customers
USERS = [
    # id, email, name, points
    ("user-1", "alice@example.com", "Alice Example", 100),
    ("user-2", "bob@example.com", "Bob Example", 0),
]


async def create_competitions(competitions: CompetitionStore) -> int:
    created = 0
    for cid, title, price, total in COMPETITIONS:
        try:
            await competitions.create(cid, title=title, price=price,
                                      total_tickets=total)
            created += 1
        except IntegrityError:
            logger.info("competition %s exists, skipped", cid)
    return created


async def create_users(points: PointsLedger) -> int:
    created = 0
    for uid, email, name, balance in USERS:
        try:
            await points.create_user(uid, email, name=name, points=balance)
            created += 1
        except IntegrityError:
            logger.info("user %s exists, skipped", uid)
    return created


async def main(database_url: str) -> None:
    engine, SessionAsync, gated = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await create_schema(conn)
        logger.info("schema created")
        n = await create_competitions(
            CompetitionStore(sessions=SessionAsync, gated=gated)
        )
        logger.info("%d competition(s) created", n)
        n = await create_users(PointsLedger(sessions=SessionAsync, gated=gated))
        logger.info("%d user(s) created", n)
    finally:
        await engine.dispose()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else DATABASE_URL))
