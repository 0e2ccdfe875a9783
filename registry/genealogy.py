import asyncio
from typing import Protocol

from loguru import logger
from sqlalchemy import Engine
from sqlmodel import Session, select

from .models.db import Member, MemberLevel


class HierarchyBuilder(Protocol):

    async def on_member_created(self, member: Member) -> None: ...


class LevelBuilder:
    """Keep the referral tree as ancestor rows.

    A new member inherits every ancestor row of its referrer one level
    deeper, plus a depth 1 row for the referrer itself. Members without a
    referrer are roots and get no rows.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine: Engine = engine

    async def on_member_created(self, member: Member) -> None:
        if member.reference is None:
            logger.debug(f"member {member.id} is a root")
            return

        with Session(self.engine) as session:
            ancestors = session.exec(
                select(MemberLevel).where(MemberLevel.member == member.reference)
            ).all()

            session.add(MemberLevel(ancestor=member.reference, member=member.id, depth=1))
            for a in ancestors:
                session.add(
                    MemberLevel(ancestor=a.ancestor, member=member.id, depth=a.depth + 1)
                )
            session.commit()

        logger.info(f"member {member.id} placed under {len(ancestors) + 1} ancestors")

    def ancestors(self, member_id: str) -> list[MemberLevel]:
        query = (
            select(MemberLevel)
            .where(MemberLevel.member == member_id)
            .order_by(MemberLevel.depth)  # type: ignore
        )
        with Session(self.engine) as session:
            return list(session.exec(query).all())


class GenealogyDispatcher:
    """Run hierarchy builds in background workers.

    Callers submit and move on, they never see the outcome of a build. On
    close, queued members get ``timeout`` seconds to drain, the rest are
    dropped.
    """

    def __init__(self, builder: HierarchyBuilder, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("at least one genealogy worker is required")

        self.builder: HierarchyBuilder = builder
        self.waiting: asyncio.Queue[Member] = asyncio.Queue()
        self.closed: bool = False

        # Builds running right now, and builds given up on close.
        self.active: int = 0
        self.dropped: int = 0

        # Keep worker references to protect from GC.
        self.workers: list[asyncio.Task[None]] = [
            asyncio.create_task(self.work_forever()) for _ in range(workers)
        ]

    def submit(self, member: Member) -> None:
        if self.closed:
            raise RuntimeError("genealogy dispatcher is closed")
        self.waiting.put_nowait(member)

    @property
    def pending(self) -> int:
        return self.waiting.qsize()

    async def work_forever(self) -> None:
        while True:
            member = await self.waiting.get()
            self.active += 1
            try:
                await self.builder.on_member_created(member)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"build genealogy of member {member.id} failed")
            finally:
                self.active -= 1
                self.waiting.task_done()

    async def join(self) -> None:
        await self.waiting.join()

    async def close(self, timeout: float = 5.0) -> None:
        if self.closed:
            return
        self.closed = True

        try:
            await asyncio.wait_for(self.waiting.join(), timeout)
        except asyncio.TimeoutError:
            self.dropped = self.pending + self.active
            logger.warning(
                f"drop {self.dropped} genealogy builds on close, "
                f"{self.active} running and {self.pending} queued"
            )

        for w in self.workers:
            w.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        logger.info("genealogy dispatcher closed")
