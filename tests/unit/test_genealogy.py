import asyncio
from unittest import mock, IsolatedAsyncioTestCase
from sqlmodel import create_engine, SQLModel
from sqlalchemy.pool import StaticPool
from registry.genealogy import GenealogyDispatcher, LevelBuilder
from registry.models.db import Member


def make_memory_engine():
    connect_args = {"check_same_thread": False}
    engine = create_engine("sqlite://", connect_args=connect_args, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


class TestGenealogyDispatcher(IsolatedAsyncioTestCase):

    async def test_build_submitted_member(self) -> None:
        builder = mock.AsyncMock()
        dispatcher = GenealogyDispatcher(builder)
        m = Member(id="m1", cardno="1")

        dispatcher.submit(m)
        await dispatcher.join()

        builder.on_member_created.assert_called_once_with(m)
        await dispatcher.close()

    async def test_failed_build_keeps_worker(self) -> None:
        builder = mock.AsyncMock()
        builder.on_member_created.side_effect = [RuntimeError("tree broken"), None]
        dispatcher = GenealogyDispatcher(builder)

        dispatcher.submit(Member(id="m1"))
        dispatcher.submit(Member(id="m2"))
        await asyncio.wait_for(dispatcher.join(), 1)

        self.assertEqual(builder.on_member_created.call_count, 2)
        self.assertFalse(any(w.done() for w in dispatcher.workers))
        await dispatcher.close()

    async def test_parallel_workers(self) -> None:
        running = 0
        peak = 0

        async def build(_: Member) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1

        builder = mock.AsyncMock()
        builder.on_member_created.side_effect = build
        dispatcher = GenealogyDispatcher(builder, workers=3)

        for i in range(6):
            dispatcher.submit(Member(id=f"m{i}"))
        await asyncio.wait_for(dispatcher.join(), 1)

        self.assertEqual(peak, 3)
        await dispatcher.close()

    async def test_close_drains_queue(self) -> None:
        builder = mock.AsyncMock()

        async def build(_: Member) -> None:
            await asyncio.sleep(0.01)

        builder.on_member_created.side_effect = build
        dispatcher = GenealogyDispatcher(builder)

        for i in range(5):
            dispatcher.submit(Member(id=f"m{i}"))
        await dispatcher.close(timeout=1)

        self.assertEqual(builder.on_member_created.call_count, 5)
        self.assertEqual(dispatcher.dropped, 0)
        self.assertTrue(all(w.done() for w in dispatcher.workers))

    async def test_close_drops_pending_after_timeout(self) -> None:
        never = asyncio.Event()

        async def block(_: Member) -> None:
            await never.wait()

        builder = mock.AsyncMock()
        builder.on_member_created.side_effect = block
        dispatcher = GenealogyDispatcher(builder)

        for i in range(3):
            dispatcher.submit(Member(id=f"m{i}"))
        await dispatcher.close(timeout=0.05)

        self.assertEqual(builder.on_member_created.call_count, 1)
        self.assertEqual(dispatcher.pending, 2)
        # The running build counts as dropped too.
        self.assertEqual(dispatcher.dropped, 3)
        self.assertEqual(dispatcher.active, 0)
        self.assertTrue(all(w.done() for w in dispatcher.workers))

    async def test_submit_after_close(self) -> None:
        dispatcher = GenealogyDispatcher(mock.AsyncMock())
        await dispatcher.close()

        with self.assertRaises(RuntimeError):
            dispatcher.submit(Member(id="m1"))

        # Close twice is fine.
        await dispatcher.close()

    async def test_no_workers(self) -> None:
        with self.assertRaises(ValueError):
            GenealogyDispatcher(mock.AsyncMock(), workers=0)


class TestLevelBuilder(IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.builder = LevelBuilder(make_memory_engine())

    async def test_root_member(self) -> None:
        await self.builder.on_member_created(Member(id="root"))
        self.assertEqual(self.builder.ancestors("root"), [])

    async def test_chain(self) -> None:
        await self.builder.on_member_created(Member(id="a"))
        await self.builder.on_member_created(Member(id="b", reference="a"))
        await self.builder.on_member_created(Member(id="c", reference="b"))
        await self.builder.on_member_created(Member(id="d", reference="c"))

        levels = self.builder.ancestors("d")
        self.assertEqual([(lv.ancestor, lv.depth) for lv in levels], [("c", 1), ("b", 2), ("a", 3)])

        levels = self.builder.ancestors("b")
        self.assertEqual([(lv.ancestor, lv.depth) for lv in levels], [("a", 1)])

    async def test_siblings(self) -> None:
        await self.builder.on_member_created(Member(id="a"))
        await self.builder.on_member_created(Member(id="b", reference="a"))
        await self.builder.on_member_created(Member(id="c", reference="a"))

        self.assertEqual([lv.ancestor for lv in self.builder.ancestors("b")], ["a"])
        self.assertEqual([lv.ancestor for lv in self.builder.ancestors("c")], ["a"])
