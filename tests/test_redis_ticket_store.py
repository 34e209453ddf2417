"""Unit tests for the Redis ticket store.

These tests use mocks and don't require a Redis server.
"""

from unittest.mock import AsyncMock

import pytest

from rafflefans.errors import CollisionError
from rafflefans.model.tickets._redis import TicketStore, k_numbers, k_ticket


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client."""
    mock = AsyncMock()
    mock.zadd = AsyncMock(return_value=1)
    mock.hset = AsyncMock(return_value=5)
    mock.zcard = AsyncMock(return_value=0)
    mock.zrevrange = AsyncMock(return_value=[])
    mock.zrange = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def store(mock_redis) -> TicketStore:
    return TicketStore(mock_redis)


class TestKeys:
    def test_key_layout(self):
        assert k_numbers("comp-1") == "tickets:comp-1"
        assert k_ticket("comp-1", 7) == "ticket:comp-1:7"


class TestReserve:
    async def test_claim_uses_zadd_nx(self, store, mock_redis):
        t = await store.reserve("comp-1", 7, {"email": "A@B.com"})

        assert t.number == 7
        assert t.email == "a@b.com"
        args, kwargs = mock_redis.zadd.call_args
        assert args[0] == "tickets:comp-1"
        assert list(args[1]) == ["7"]
        assert kwargs == {"nx": True}

    async def test_winner_writes_metadata(self, store, mock_redis):
        await store.reserve("comp-1", 7, {"competition_ref": "ref-9"})

        mock_redis.hset.assert_called_once()
        args, kwargs = mock_redis.hset.call_args
        assert args[0] == "ticket:comp-1:7"
        assert kwargs["mapping"]["competition_ref"] == "ref-9"
        assert kwargs["mapping"]["number"] == "7"

    async def test_existing_member_is_a_collision(self, store, mock_redis):
        mock_redis.zadd.return_value = 0

        with pytest.raises(CollisionError):
            await store.reserve("comp-1", 7)

        mock_redis.hset.assert_not_called()


class TestReads:
    async def test_count(self, store, mock_redis):
        mock_redis.zcard.return_value = 12

        assert await store.count("comp-1") == 12
        mock_redis.zcard.assert_called_once_with("tickets:comp-1")

    async def test_sample(self, store, mock_redis):
        mock_redis.zrevrange.return_value = ["9", "4", "1"]

        assert await store.sample("comp-1", limit=3) == [9, 4, 1]
        mock_redis.zrevrange.assert_called_once_with("tickets:comp-1", 0, 2)

    async def test_numbers_sorted(self, store, mock_redis):
        mock_redis.zrange.return_value = ["10", "2", "33"]

        assert await store.numbers("comp-1") == [2, 10, 33]
