"""
Queue Consumer — Pulls message jobs from the queue and drives dispatch.

Runs as one or more async tasks inside the worker process.
For horizontal scaling, deploy multiple processes with the same consumer_group;
Redis Streams guarantees each job is delivered to exactly one consumer.

Topology:
  ┌──────────────┐       ┌─────────────────┐       ┌────────────┐
  │  Dispatcher  │──pub──▶│ <queue> streams  │──────▶│   Worker   │
  │  .queue()    │       │ (by priority)    │       │  tasks     │
  └──────────────┘       └─────────────────┘       └─────┬──────┘
                                                          │
                         ┌─────────────────┐              │
                         │ delayed (sorted  │◀── retry ───┤
                         │  set / promoter) │              │
                         └────────┬────────┘              │
                                  │ promote               │
                                  ▼                       │
                         ┌─────────────────┐              │
                         │ <queue> streams  │              │
                         └─────────────────┘              │
                                                          │
                         ┌─────────────────┐              │
                         │  <queue>:dlq     │◀── exhaust ──┘
                         └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from job_queue.message_queue import MessageQueue, QueueJob

logger = structlog.get_logger()


class MessageWorker:
    """
    Consumes jobs from one or more named queues and hands each to
    dispatcher.process(). Concurrency is the number of consumer tasks per queue.

    Usage:
        worker = MessageWorker(dispatcher, queue, ["email", "sms"])
        await worker.start()              # blocks, runs until stop()
        await worker.start_background()   # returns immediately
        await worker.stop()
    """

    def __init__(
        self,
        dispatcher,  # core.dispatcher.MessageDispatcher
        queue: MessageQueue,
        queue_names: list[str],
        consumer_group: str = "message-workers",
        consumer_name: str = "",
        concurrency: int = 1,
    ):
        self.dispatcher = dispatcher
        self.queue = queue
        self.queue_names = list(queue_names)
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name or "worker"
        self.concurrency = max(1, concurrency)
        self._tasks: list[asyncio.Task] = []

    def _consumers(self):
        for queue_name in self.queue_names:
            for i in range(self.concurrency):
                yield self.queue.consume(
                    queue_name=queue_name,
                    handler=self._handle_job,
                    consumer_group=self.consumer_group,
                    consumer_name=f"{self.consumer_name}-{queue_name}-{i}",
                )

    async def start(self):
        """Start consuming — blocks until stop() is called."""
        logger.info("message_worker_starting",
                    queues=self.queue_names,
                    group=self.consumer_group,
                    concurrency=self.concurrency)
        self._tasks = [asyncio.create_task(c) for c in self._consumers()]
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def start_background(self) -> list[asyncio.Task]:
        """Start consuming in background tasks. Returns the task handles."""
        self._tasks = [asyncio.create_task(c) for c in self._consumers()]
        logger.info("message_worker_started",
                    queues=self.queue_names,
                    tasks=len(self._tasks))
        return self._tasks

    async def stop(self):
        """Gracefully stop all consumer tasks."""
        self.queue.stop_consuming()
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("message_worker_stopped")

    async def _handle_job(self, job: QueueJob):
        """
        Process a single message job. Exceptions propagate so the queue
        layer can retry or dead-letter the job.
        """
        logger.info("processing_job",
                    job_id=job.job_id,
                    queue=job.queue_name,
                    message_id=job.data.get("id"),
                    attempt=job.attempt,
                    priority=job.priority)
        try:
            message = await self.dispatcher.process(job)
        except Exception as e:
            logger.warning("job_processing_error",
                           job_id=job.job_id,
                           message_id=job.data.get("id"),
                           error=str(e))
            raise
        if message is not None:
            logger.info("job_dispatch_success",
                        job_id=job.job_id,
                        message_id=message.id,
                        state=message.state.value)


# ──────────────────────────────────────────────────────────────
#  Delayed Job Promoter
# ──────────────────────────────────────────────────────────────

class DelayedJobPromoter:
    """
    Background task that periodically moves delayed/retry jobs
    whose scheduled_at has arrived back onto their queues.

    For Redis: runs ZRANGEBYSCORE + XADD pipeline.
    For in-memory: the queue runs its own promote loop; this is harmless there.
    """

    def __init__(self, queue: MessageQueue, interval_seconds: float = 5):
        self.queue = queue
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        logger.info("delayed_promoter_started", interval=self.interval)
        while True:
            try:
                await self.queue.promote_delayed()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("promoter_error", error=str(e))
            await asyncio.sleep(self.interval)
