import asyncio
from typing import Protocol

import redis.asyncio as redis
from loguru import logger

# Lua numbers are doubles, counters stay where they compare exactly.
MAX_CARDNO = 2**53 - 1

# KEYS[1] counter, KEYS[2] recycled set, ARGV[1] start.
# The counter is raised to start first, start may grow between restarts.
ALLOCATE_SCRIPT = """
local recycled = redis.call("SPOP", KEYS[2])
if recycled then
    return recycled
end
local current = tonumber(redis.call("GET", KEYS[1]) or "0")
if current < tonumber(ARGV[1]) then
    redis.call("SET", KEYS[1], ARGV[1])
end
return redis.call("INCR", KEYS[1])
"""

# KEYS[1] counter, KEYS[2] recycled set, ARGV[1] claimed number, ARGV[2] start.
MARK_USED_SCRIPT = """
local current = tonumber(redis.call("GET", KEYS[1]) or ARGV[2])
if tonumber(ARGV[1]) > current then
    redis.call("SET", KEYS[1], ARGV[1])
end
redis.call("SREM", KEYS[2], ARGV[1])
return 1
"""


def out_of_range(cardno: int) -> bool:
    if cardno > MAX_CARDNO:
        logger.warning(f"card {cardno} is beyond allocated range, not tracked")
        return True
    return False


class CardAllocator(Protocol):

    async def allocate_new(self) -> str: ...

    async def mark_used(self, cardno: int) -> None: ...

    async def release(self, cardno: str) -> None: ...


class LocalCardAllocator:
    """In process card numbers, for a single registry instance.

    Claims and allocations are serialized by one lock, numbers are issued
    above the highest number ever claimed or allocated. Released numbers are
    issued again before the counter moves on.
    """

    def __init__(self, start: int = 0) -> None:
        self.lock: asyncio.Lock = asyncio.Lock()
        self.last: int = start
        self.recycled: set[int] = set()

    async def allocate_new(self) -> str:
        async with self.lock:
            if len(self.recycled) != 0:
                n = min(self.recycled)
                self.recycled.discard(n)
                return str(n)

            self.last += 1
            return str(self.last)

    async def mark_used(self, cardno: int) -> None:
        if out_of_range(cardno):
            return

        async with self.lock:
            self.recycled.discard(cardno)
            if cardno > self.last:
                self.last = cardno

    async def release(self, cardno: str) -> None:
        async with self.lock:
            n = int(cardno)
            if n > self.last:
                raise ValueError(f"card {cardno} was never issued")
            self.recycled.add(n)
        logger.debug(f"card {cardno} released")


class RedisCardAllocator:
    """Card numbers shared by every registry instance on one redis.

    Each operation is a single lua script, redis runs them one at a time.
    """

    def __init__(
        self,
        rdb: redis.Redis,
        counter_key: str,
        recycle_key: str,
        start: int = 0,
    ) -> None:
        self.rdb: redis.Redis = rdb
        self.counter_key: str = counter_key
        self.recycle_key: str = recycle_key
        self.start: int = start

        self.allocate_script = rdb.register_script(ALLOCATE_SCRIPT)
        self.mark_used_script = rdb.register_script(MARK_USED_SCRIPT)

    async def allocate_new(self) -> str:
        n = await self.allocate_script(
            keys=[self.counter_key, self.recycle_key], args=[self.start]
        )
        return str(int(n))

    async def mark_used(self, cardno: int) -> None:
        if out_of_range(cardno):
            return

        await self.mark_used_script(
            keys=[self.counter_key, self.recycle_key], args=[cardno, self.start]
        )

    async def release(self, cardno: str) -> None:
        await self.rdb.sadd(self.recycle_key, str(int(cardno)))  # type: ignore
        logger.debug(f"card {cardno} released")
