from dataclasses import dataclass

import redis.asyncio as redis
from loguru import logger
from sqlalchemy import Engine
from sqlmodel import create_engine

from . import config, models
from .cards import MAX_CARDNO, CardAllocator, LocalCardAllocator, RedisCardAllocator
from .genealogy import GenealogyDispatcher, LevelBuilder
from .logs import setup_logging
from .members import MemberCreator, MemberResolver
from .store import MemberStore


def make_engine(conf: config.DatabaseConfig) -> Engine:
    connect_args = {}
    if conf.url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    engine = create_engine(conf.url, connect_args=connect_args)
    models.create_all_tables(engine)
    return engine


def make_card_allocator(
    conf: config.CardConfig, store: MemberStore, rdb: redis.Redis | None
) -> CardAllocator:
    if conf.backend == config.CardBackend.redis and rdb is None:
        raise ValueError("redis card allocator needs a redis connection")

    # Continue after the highest card already handed out.
    start = max(conf.start, store.max_numeric_cardno(upto=MAX_CARDNO) or 0)
    logger.info(f"{conf.backend} card allocator starts after {start}")

    if rdb is not None and conf.backend == config.CardBackend.redis:
        return RedisCardAllocator(rdb, conf.counter_key, conf.recycle_key, start)
    return LocalCardAllocator(start)


@dataclass
class Registry:
    conf: config.Config
    engine: Engine
    rdb: redis.Redis | None
    store: MemberStore
    genealogy: GenealogyDispatcher
    resolver: MemberResolver
    creator: MemberCreator

    # Must be called with a running event loop, genealogy workers start here.
    @staticmethod
    def open(conf: config.Config, engine: Engine | None = None) -> "Registry":
        setup_logging(conf.log)

        if engine is None:
            engine = make_engine(conf.database)

        rdb: redis.Redis | None = None
        if conf.card.backend == config.CardBackend.redis:
            rdb = redis.Redis(
                host=conf.redis.host,
                port=conf.redis.port,
                db=conf.redis.db,
                decode_responses=True,
            )

        store = MemberStore(engine)
        cards = make_card_allocator(conf.card, store, rdb)
        genealogy = GenealogyDispatcher(LevelBuilder(engine), conf.genealogy.workers)
        resolver = MemberResolver(store)
        creator = MemberCreator(
            store,
            resolver,
            cards,
            genealogy,
            validate_phone_on_create=conf.registry.validate_phone_on_create,
        )

        logger.info("member registry opened")
        return Registry(
            conf=conf,
            engine=engine,
            rdb=rdb,
            store=store,
            genealogy=genealogy,
            resolver=resolver,
            creator=creator,
        )

    async def close(self) -> None:
        try:
            await self.genealogy.close(self.conf.genealogy.drain_timeout)
        finally:
            if self.rdb is not None:
                await self.rdb.aclose()
            self.engine.dispose()
        logger.info("member registry closed")
