"""
End-to-end tests across the layers:
- Dispatcher → queue → MessageWorker → transport
- Retry with backoff, then dead-lettering
- SQL-backed dispatch (SQLite)
- Composition from Settings via build_dispatcher
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from config.settings import DispatchConfig, Settings, TransportConfig
from core.bootstrap import build_dispatcher
from core.dispatcher import MessageDispatcher
from job_queue.consumer import DelayedJobPromoter, MessageWorker
from models.message import State


async def _wait_until(predicate, timeout: float = 3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.02)


# ══════════════════════════════════════════════════════════════
#  Worker flow
# ══════════════════════════════════════════════════════════════

class TestWorkerFlow:
    @pytest.mark.asyncio
    async def test_queued_message_is_sent_by_worker(self, dispatcher, queue, store, make_message):
        worker = MessageWorker(dispatcher, queue, ["email"])
        await worker.start_background()
        try:
            job = await dispatcher.queue(make_message())
            message_id = job.data["id"]

            async def delivered():
                stored = await store.find_by_id(message_id)
                return stored.sent_at is not None

            await _wait_until(delivered)
        finally:
            await worker.stop()

        stored = await store.find_by_id(message_id)
        assert stored.state == State.DELIVERED
        assert stored.result == {"message": "success"}
        assert await queue.queue_length("email") == 0

    @pytest.mark.asyncio
    async def test_failed_job_retries_then_dead_letters(self, store, queue, registry,
                                                        failing_transport, make_message):
        dispatcher = MessageDispatcher(
            store=store, queue=queue, registry=registry,
            config=DispatchConfig(attempts=2, backoff="fixed", backoff_delay=30),
        )
        worker = MessageWorker(dispatcher, queue, ["email"])

        job = await dispatcher.queue(make_message(transport="failing"))
        assert job.attempts == 2

        await queue.process_pending("email", worker._handle_job)
        assert failing_transport.calls == 1
        assert [j.attempt for j in queue.delayed_jobs()] == [1]

        later = (datetime.now(timezone.utc) + timedelta(seconds=31)).timestamp()
        assert await queue.promote_delayed(now=later) == 1
        await queue.process_pending("email", worker._handle_job)
        assert failing_transport.calls == 2

        dead = await queue.dead_letters("email")
        assert [j.data["id"] for j in dead] == [job.data["id"]]
        assert dead[0].metadata["dlq_reason"] == "Exceeded 2 attempts"

        stored = await store.find_by_id(job.data["id"])
        assert stored.failed_at is not None
        assert stored.sent_at is None
        assert stored.result["code"] == "550"

    @pytest.mark.asyncio
    async def test_job_for_deleted_message_is_acknowledged(self, dispatcher, queue):
        worker = MessageWorker(dispatcher, queue, ["email"])
        await queue.enqueue("email", {"id": "missing"})
        assert await queue.process_pending("email", worker._handle_job) == 1
        assert queue.delayed_jobs() == []
        assert await queue.dead_letters("email") == []

    @pytest.mark.asyncio
    async def test_promoter_moves_due_jobs(self, queue):
        job = queue.create_job("email", {"id": "m1"})
        job.scheduled_at = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        await queue.publish_delayed(job)

        promoter = DelayedJobPromoter(queue, interval_seconds=0.01)
        await promoter.start_background()
        try:
            async def promoted():
                return await queue.queue_length("email") == 1

            await _wait_until(promoted)
        finally:
            await promoter.stop()


# ══════════════════════════════════════════════════════════════
#  SQL-backed dispatch
# ══════════════════════════════════════════════════════════════

class TestSqlDispatch:
    @pytest_asyncio.fixture
    async def sql_dispatcher(self, tmp_path, queue, registry):
        from database.store import SqlMessageStore
        store = SqlMessageStore(url=f"sqlite:///{tmp_path}/dispatch.db")
        dispatcher = MessageDispatcher(store=store, queue=queue, registry=registry)
        yield dispatcher
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_queue_process_and_lookup(self, sql_dispatcher, make_message):
        job = await sql_dispatcher.queue(make_message(body="one"))
        await sql_dispatcher.create(make_message(body="two"))

        sent = await sql_dispatcher.process(job)
        assert sent.state == State.DELIVERED

        assert [m.body for m in await sql_dispatcher.sent()] == ["one"]
        assert [m.body for m in await sql_dispatcher.unsent()] == ["two"]

    @pytest.mark.asyncio
    async def test_receive_deduplicates(self, sql_dispatcher, make_message):
        first, created = await sql_dispatcher.receive(make_message())
        again, created_again = await sql_dispatcher.receive(make_message())
        assert created and not created_again
        assert again.id == first.id


# ══════════════════════════════════════════════════════════════
#  Composition
# ══════════════════════════════════════════════════════════════

class TestBootstrap:
    @pytest.mark.asyncio
    async def test_build_dispatcher_from_settings(self, make_message):
        settings = Settings(transports={
            "echo": TransportConfig(type="echo"),
            "audit": TransportConfig(type="log", options={"queue_name": "audit"}),
        })
        dispatcher = await build_dispatcher(settings)
        try:
            assert dispatcher.registry.names() == ["echo", "audit"]
            assert dispatcher.registry.resolve("echo").initialized

            message = await dispatcher.send(make_message())
            assert message.sent_at is not None

            routed = dispatcher.assign_transport(make_message(body="audit me"), "audit")
            job = await dispatcher.queue(routed)
            assert job.queue_name == "audit"
        finally:
            await dispatcher.close()
