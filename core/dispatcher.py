"""
MessageDispatcher — the message lifecycle engine.

Responsibilities:
  1. Persist messages (normalize + validate + dedup via the store)
  2. Queue push-mode messages as jobs; leave pull-mode messages for their transport
  3. Send through the transport resolved from message.transport and record
     the outcome (sentAt/state/result or failedAt/result)
  4. Bulk resend / requeue of unsent messages
  5. Worker entry point: process(job)

Every collaborator is injected; one dispatcher per process.

Events (best-effort, see core.events):
  message:queue:error      (error, message)
  message:queue:success    (message)
  message:sent:error       (error, message)
  message:sent:success     (message)
  message:requeue:error    (error)
  message:requeue:success  (messages)
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any, Optional, Union

from config.settings import DispatchConfig
from core.events import (
    MessageEvents,
    QUEUE_ERROR, QUEUE_SUCCESS, SENT_ERROR, SENT_SUCCESS,
    REQUEUE_ERROR, REQUEUE_SUCCESS,
)
from database.criteria import sent_criteria, unsent_criteria
from database.store_base import BaseMessageStore
from job_queue.message_queue import MessageQueue, QueueJob
from models.errors import (
    DuplicateKeyError, MessageError, PersistenceError, TransportError,
)
from models.hashing import compute_hash
from models.message import Direction, Message, SendMode, State
from transports.base import Transport, TransportRegistry

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageDispatcher:
    """
    Usage:
        dispatcher = MessageDispatcher(store, queue, registry)
        job = await dispatcher.queue(message)          # push → one job
        message = await dispatcher.send(message)       # inline send
        await dispatcher.process(job)                  # worker side
    """

    def __init__(
        self,
        store: BaseMessageStore,
        queue: Optional[MessageQueue] = None,
        registry: Optional[TransportRegistry] = None,
        events: Optional[MessageEvents] = None,
        config: Optional[DispatchConfig] = None,
    ):
        self.store = store
        self.queue_backend = queue
        self.registry = registry or TransportRegistry()
        self.events = events or MessageEvents()
        self.config = config or DispatchConfig()
        self._pending: set[asyncio.Task] = set()

    # ── Internals ─────────────────────────────────────────

    async def _emit(self, event: str, *args: Any, transport: Optional[Transport] = None):
        await self.events.emit(event, *args)
        sink = getattr(transport, "events", None)
        if sink is not None and sink is not self.events:
            await sink.emit(event, *args)

    @staticmethod
    def _result_state(result: Any, transport: Transport) -> Optional[str]:
        """The post-send state a transport reported, if it is a known literal."""
        state = result.get("state") if isinstance(result, dict) else None
        if state is None:
            return None
        try:
            return State(state).value
        except ValueError:
            logger.warning("unknown_transport_state",
                           transport=transport.name, state=state)
            return None

    async def _persist(self, message: Message) -> Message:
        """Insert on first persistence, replace afterwards."""
        if message.created_at is None:
            return await self.store.create(message)
        return await self.store.save(message)

    # ── Persistence ───────────────────────────────────────

    async def create(self, message: Message) -> Message:
        """Normalize, validate and insert a new record."""
        return await self.store.create(message)

    async def receive(self, message: Message) -> tuple[Message, bool]:
        """
        Record an inbound message. Re-ingesting a message whose hash already
        exists returns the stored record with created=False. A hash derived
        from the message's own fields is recomputed for the inbound direction;
        one supplied by the caller is kept.
        """
        if message.hash and message.hash == compute_hash(message):
            message.hash = None
        message.direction = Direction.INBOUND
        message.state = State.RECEIVED
        message.prepare()

        existing = await self.store.find_by_hash(message.hash)
        if existing is not None:
            logger.info("message_already_received",
                        message_id=existing.id, hash=message.hash)
            return existing, False
        try:
            created = await self.store.create(message)
        except DuplicateKeyError:
            existing = await self.store.find_by_hash(message.hash)
            if existing is None:
                raise
            return existing, False
        logger.info("message_received", message_id=created.id, type=created.type.value)
        return created, True

    def assign_transport(self, message: Message, name: str) -> Message:
        """
        Route a message to a registered transport. The hash is cleared so the
        next persistence fingerprints the new routing fields.
        """
        transport = self.registry.resolve(name)
        message.transport = transport.name
        if transport.queue_name:
            message.queue_name = transport.queue_name
        message.hash = None
        return message

    # ── Queue ─────────────────────────────────────────────

    async def queue(
        self,
        message: Message,
        attempts: Optional[int] = None,
        backoff: Union[str, dict, None] = None,
    ) -> Optional[QueueJob]:
        """
        Persist the message and, for push mode, enqueue one job on its
        queueName. Returns the job, or None for pull mode and on failure
        (failures are reported through message:queue:error).
        """
        if message.mode == SendMode.PULL:
            message.state = State.UNKNOWN

        try:
            message = await self._persist(message)
        except MessageError as e:
            logger.warning("message_queue_persist_failed",
                           message_id=message.id, error=str(e))
            await self._emit(QUEUE_ERROR, e, message)
            return None

        if message.mode == SendMode.PULL:
            logger.info("message_awaiting_pull",
                        message_id=message.id, transport=message.transport)
            await self._emit(QUEUE_SUCCESS, message)
            return None

        if self.queue_backend is None:
            error = PersistenceError("No queue backend configured")
            await self._emit(QUEUE_ERROR, error, message)
            return None

        try:
            job = await self.queue_backend.enqueue(
                message.queue_name,
                message.to_document(),
                priority=message.priority,
                attempts=attempts or self.config.attempts,
                backoff=backoff or self.config.backoff,
                backoff_delay=self.config.backoff_delay,
            )
        except Exception as e:
            logger.error("message_enqueue_failed",
                         message_id=message.id, queue=message.queue_name, error=str(e))
            await self._emit(QUEUE_ERROR, e, message)
            return None

        logger.info("message_queued",
                    message_id=message.id,
                    queue=message.queue_name,
                    job_id=job.job_id,
                    priority=message.priority.value)
        await self._emit(QUEUE_SUCCESS, message)
        return job

    # ── Send ──────────────────────────────────────────────

    async def send(self, message: Message, fake: bool = False) -> Message:
        """Send through the message's transport; fake=True only marks it sent."""
        message.prepare()
        if fake:
            if message.sent_at is None:
                message.sent_at = _utcnow()
            message.result = {"message": "success"}
            return await self._persist(message)
        return await self._send(message)

    async def _send(self, message: Message) -> Message:
        transport = self.registry.resolve(message.transport)

        try:
            result = await transport.send(message)
        except Exception as e:
            error = TransportError.from_exception(e, transport.name)
            message.mark_failed(error.to_result())
            logger.warning("message_send_failed",
                           message_id=message.id,
                           transport=transport.name,
                           code=error.code,
                           status=error.status,
                           error=str(error))
            await self._emit(SENT_ERROR, error, message, transport=transport)
            await self._persist(message)
            if error is e:
                raise
            raise error from e

        result = result if result is not None else {}
        message.mark_sent(result, self._result_state(result, transport))
        message = await self._persist(message)

        logger.info("message_sent",
                    message_id=message.id,
                    transport=transport.name,
                    state=message.state.value)
        await self._emit(SENT_SUCCESS, message, transport=transport)
        return message

    # ── Bulk ──────────────────────────────────────────────

    async def resend(self, criteria: Optional[dict[str, Any]] = None) -> list[Union[Message, BaseException]]:
        """Send every unsent match concurrently; one outcome per record."""
        unsent = await self.unsent(criteria)
        if not unsent:
            return []
        results = await asyncio.gather(
            *(self.send(m) for m in unsent), return_exceptions=True,
        )
        failed = sum(1 for r in results if isinstance(r, BaseException))
        logger.info("messages_resent", total=len(results), failed=failed)
        return list(results)

    async def requeue(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        """
        Queue every unsent match again without waiting for the individual
        queue operations; use drain() to wait for them.
        """
        try:
            unsent = await self.unsent(criteria)
        except (MessageError, ValueError) as e:
            logger.error("message_requeue_failed", error=str(e))
            await self._emit(REQUEUE_ERROR, e)
            return []

        await self._emit(REQUEUE_SUCCESS, unsent)
        for message in unsent:
            task = asyncio.create_task(self.queue(message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        logger.info("messages_requeued", count=len(unsent))
        return unsent

    async def drain(self) -> None:
        """Wait for in-flight requeue tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Worker entry ──────────────────────────────────────

    async def process(self, job: Union[QueueJob, dict[str, Any]]) -> Optional[Message]:
        """Load the job's message and send it. Missing records are a no-op."""
        data = job.data if isinstance(job, QueueJob) else job
        message_id = (data or {}).get("id")
        if not message_id:
            logger.warning("job_without_message_id",
                           job_id=getattr(job, "job_id", None))
            return None

        message = await self.store.find_by_id(message_id)
        if message is None:
            logger.warning("message_not_found",
                           message_id=message_id,
                           job_id=getattr(job, "job_id", None))
            return None
        return await self.send(message)

    # ── Lookups ───────────────────────────────────────────

    async def unsent(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        return await self.store.find(unsent_criteria(criteria))

    async def sent(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        return await self.store.find(sent_criteria(criteria))

    # ── Lifecycle ─────────────────────────────────────────

    async def close(self) -> None:
        await self.drain()
        await self.registry.shutdown_all()
        if self.queue_backend is not None:
            await self.queue_backend.close()
        await self.store.close()
