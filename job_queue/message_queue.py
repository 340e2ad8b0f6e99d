"""
Message Queue — Abstract interface with Redis Streams and in-memory backends.

Queue Topology (per named queue, e.g. "email"):
  <queue>:<priority>   — Ready jobs, one Redis Stream per priority level,
                         read highest priority first
  queue:delayed        — Jobs with a future execution time (sorted set in Redis),
                         shared by all queues; used for retries with backoff
  <queue>:dlq          — Dead-letter stream for jobs that exhausted their attempts

Priority levels (lower runs first, ties run FIFO):
  critical=-15, high=-10, medium=-5, normal=0, low=10

Job Schema (flat string fields on the wire):
  {
      "job_id":       unique job identifier (stable across retries),
      "queue_name":   target queue,
      "data":         JSON payload, carried unchanged (the message document),
      "priority":     integer priority level,
      "attempts":     ceiling before DLQ,
      "attempt":      current attempt number (0-based),
      "backoff":      JSON {"type": "exponential"|"fixed", "delay": seconds},
      "scheduled_at": ISO timestamp when the job should execute,
      "created_at":   ISO timestamp when the job was created,
      "metadata":     JSON dict (failure reasons, timestamps),
  }
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from models.errors import PersistenceError

logger = structlog.get_logger()

JobHandler = Callable[["QueueJob"], Awaitable[Any]]

PRIORITY_LEVELS = {
    "low": 10,
    "normal": 0,
    "medium": -5,
    "high": -10,
    "critical": -15,
}

DELAYED_KEY = "queue:delayed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def priority_level(priority: Union[str, int, Any]) -> int:
    """Map a priority name (or enum) to its numeric level; ints pass through."""
    if isinstance(priority, int):
        return priority
    name = getattr(priority, "value", priority)
    try:
        return PRIORITY_LEVELS[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unknown priority: {priority!r}") from None


def dlq_name(queue_name: str) -> str:
    return f"{queue_name}:dlq"


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

@dataclass
class Backoff:
    """Retry delay policy. Exponential: delay * 2**attempt. Fixed: delay."""
    type: str = "exponential"
    delay: float = 60

    def __post_init__(self):
        if self.type not in ("exponential", "fixed"):
            raise ValueError(f"Unknown backoff type: {self.type!r}")

    @classmethod
    def parse(cls, value: Any, default_delay: float = 60) -> Backoff:
        """Accept a Backoff, a type name, or a {"type", "delay"} dict."""
        if isinstance(value, Backoff):
            return value
        if value is None:
            return cls(delay=default_delay)
        if isinstance(value, str):
            return cls(type=value, delay=default_delay)
        if isinstance(value, dict):
            return cls(
                type=value.get("type", "exponential"),
                delay=float(value.get("delay", default_delay)),
            )
        raise ValueError(f"Invalid backoff: {value!r}")

    def delay_for(self, attempt: int) -> float:
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** attempt)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "delay": self.delay}


@dataclass
class QueueJob:
    """A unit of work on the queue."""
    queue_name: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    attempts: int = 1
    attempt: int = 0
    backoff: Backoff = field(default_factory=Backoff)
    scheduled_at: str = ""
    created_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str = ""

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.created_at:
            self.created_at = _utcnow().isoformat()
        if not self.scheduled_at:
            self.scheduled_at = self.created_at

    # ── Fluent configuration ──────────────────────────────

    def set_priority(self, priority: Union[str, int, Any]) -> QueueJob:
        self.priority = priority_level(priority)
        return self

    def set_attempts(self, attempts: int) -> QueueJob:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = int(attempts)
        return self

    def set_backoff(self, backoff: Any, default_delay: float = 60) -> QueueJob:
        self.backoff = Backoff.parse(backoff, default_delay)
        return self

    # ── Serialization ─────────────────────────────────────

    def to_dict(self) -> dict[str, str]:
        return {
            "job_id": self.job_id,
            "queue_name": self.queue_name,
            "data": json.dumps(self.data, default=str),
            "priority": str(self.priority),
            "attempts": str(self.attempts),
            "attempt": str(self.attempt),
            "backoff": json.dumps(self.backoff.to_dict()),
            "scheduled_at": self.scheduled_at,
            "created_at": self.created_at,
            "metadata": json.dumps(self.metadata, default=str),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueJob:
        data = dict(data)  # copy
        for key in ("data", "metadata", "backoff"):
            if isinstance(data.get(key), str):
                data[key] = json.loads(data[key])
        data["backoff"] = Backoff.parse(data.get("backoff"))
        data["priority"] = int(data.get("priority", 0))
        data["attempts"] = int(data.get("attempts", 1))
        data["attempt"] = int(data.get("attempt", 0))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    # ── Scheduling ────────────────────────────────────────

    @property
    def is_scheduled_now(self) -> bool:
        if not self.scheduled_at:
            return True
        try:
            return _utcnow() >= _parse_time(self.scheduled_at)
        except ValueError:
            return True

    @property
    def is_exhausted(self) -> bool:
        return self.attempt + 1 >= self.attempts

    def next_retry_job(self) -> QueueJob:
        """Create a copy with incremented attempt, scheduled after the backoff delay."""
        now = _utcnow()
        retry_at = now + timedelta(seconds=self.backoff.delay_for(self.attempt))
        return QueueJob(
            queue_name=self.queue_name,
            data=self.data,
            priority=self.priority,
            attempts=self.attempts,
            attempt=self.attempt + 1,
            backoff=self.backoff,
            scheduled_at=retry_at.isoformat(),
            created_at=self.created_at,
            metadata={**self.metadata, "last_failure_at": now.isoformat()},
            job_id=self.job_id,  # same job_id across retries for tracing
        )


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract message queue interface."""

    _running: bool = False

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    def create_job(self, queue_name: str, data: dict[str, Any]) -> QueueJob:
        """Build an unsaved job; configure it with the set_* methods, then save()."""
        return QueueJob(queue_name=queue_name, data=data)

    async def save(self, job: QueueJob) -> QueueJob:
        """Persist a job: ready now → publish, future scheduled_at → delayed set."""
        if job.is_scheduled_now:
            await self.publish(job)
        else:
            await self.publish_delayed(job)
        return job

    async def enqueue(
        self,
        queue_name: str,
        payload: dict[str, Any],
        priority: Union[str, int, Any] = "normal",
        attempts: int = 3,
        backoff: Any = "exponential",
        backoff_delay: float = 60,
    ) -> QueueJob:
        job = (
            self.create_job(queue_name, payload)
            .set_priority(priority)
            .set_attempts(attempts)
            .set_backoff(backoff, backoff_delay)
        )
        return await self.save(job)

    @abstractmethod
    async def publish(self, job: QueueJob):
        """Make a job immediately available on job.queue_name."""
        ...

    @abstractmethod
    async def publish_delayed(self, job: QueueJob):
        """Publish a job that should execute at job.scheduled_at."""
        ...

    @abstractmethod
    async def consume(
        self,
        queue_name: str,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
        batch_size: int = 10,
    ):
        """
        Start consuming from a queue. Blocks and calls handler for each job,
        highest priority first. Handler exceptions route the job to nack().
        """
        ...

    def stop_consuming(self):
        self._running = False

    async def _run_handler(self, job: QueueJob, handler: JobHandler) -> bool:
        try:
            await handler(job)
            return True
        except Exception as e:
            logger.error("job_handler_error",
                         queue=job.queue_name,
                         job_id=job.job_id,
                         attempt=job.attempt,
                         error=str(e))
            await self.nack(job)
            return False

    async def nack(self, job: QueueJob):
        """Negative-acknowledge — route to retry or DLQ."""
        if job.is_exhausted:
            job.metadata["dlq_reason"] = f"Exceeded {job.attempts} attempts"
            await self.dead_letter(job)
            logger.warning("job_moved_to_dlq",
                           queue=job.queue_name,
                           job_id=job.job_id,
                           attempts=job.attempt + 1)
        else:
            retry_job = job.next_retry_job()
            await self.publish_delayed(retry_job)
            logger.info("job_scheduled_for_retry",
                        job_id=job.job_id,
                        attempt=retry_job.attempt,
                        scheduled_at=retry_job.scheduled_at)

    @abstractmethod
    async def dead_letter(self, job: QueueJob):
        ...

    @abstractmethod
    async def dead_letters(self, queue_name: str, count: int = 100) -> list[QueueJob]:
        ...

    @abstractmethod
    async def queue_length(self, queue_name: str) -> int:
        """Return the number of ready jobs in a queue."""
        ...

    @abstractmethod
    async def peek(self, queue_name: str, count: int = 10) -> list[QueueJob]:
        """Peek at jobs, in run order, without consuming them."""
        ...

    @abstractmethod
    async def promote_delayed(self) -> int:
        """Move delayed jobs whose scheduled_at has arrived to their queues."""
        ...


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

_BUCKETS = sorted(PRIORITY_LEVELS.items(), key=lambda item: item[1])


def _bucket(priority: int) -> str:
    """Stream bucket for a level: the closest named level at or above it."""
    chosen = _BUCKETS[0][0]
    for name, level in _BUCKETS:
        if level <= priority:
            chosen = name
    return chosen


class RedisMessageQueue(MessageQueue):
    """
    Production queue backed by Redis Streams + Sorted Sets.

    - Each queue is one stream per priority level, consumed via consumer groups
    - Entries delivered but never acked are re-delivered to the same consumer
      name on restart
    - Delayed retries use a shared Sorted Set (ZRANGEBYSCORE for promotion)
    - DLQ uses a Redis Stream for inspection
    """

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self._redis_url = redis_url
        self._redis = None
        self._running = False

    async def connect(self):
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        await self._redis.ping()
        logger.info("redis_queue_connected", url=self._redis_url)

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.aclose()

    @staticmethod
    def stream_names(queue_name: str) -> list[str]:
        return [f"{queue_name}:{name}" for name, _ in _BUCKETS]

    async def _ensure_groups(self, queue_name: str, group: str):
        """Create consumer groups if they don't exist."""
        from redis.exceptions import ResponseError
        for stream in self.stream_names(queue_name):
            try:
                await self._redis.xgroup_create(stream, group, id="0", mkstream=True)
            except ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    async def publish(self, job: QueueJob):
        from redis.exceptions import RedisError
        stream = f"{job.queue_name}:{_bucket(job.priority)}"
        try:
            await self._redis.xadd(stream, job.to_dict())
        except RedisError as e:
            raise PersistenceError(f"Failed to publish job {job.job_id}: {e}") from e
        logger.info("job_published",
                    queue=job.queue_name,
                    stream=stream,
                    job_id=job.job_id,
                    priority=job.priority)

    async def publish_delayed(self, job: QueueJob):
        from redis.exceptions import RedisError
        score = _parse_time(job.scheduled_at).timestamp()
        payload = json.dumps(job.to_dict())
        try:
            await self._redis.zadd(DELAYED_KEY, {payload: score})
        except RedisError as e:
            raise PersistenceError(f"Failed to delay job {job.job_id}: {e}") from e
        logger.info("delayed_job_published",
                    job_id=job.job_id,
                    scheduled_at=job.scheduled_at)

    async def _read(self, queue_name: str, group: str, consumer: str,
                    batch_size: int, last_id: str, block: Optional[int]):
        streams = {s: last_id for s in self.stream_names(queue_name)}
        return await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams=streams,
            count=batch_size,
            block=block,
        ) or []

    async def _process_batch(self, queue_name: str, entries, handler: JobHandler,
                             group: str) -> int:
        by_stream = dict(entries)
        handled = 0
        for stream_name in self.stream_names(queue_name):
            for entry_id, fields in by_stream.get(stream_name) or []:
                if not fields:
                    # pending entry that was trimmed from the stream
                    await self._redis.xack(stream_name, group, entry_id)
                    continue
                job = QueueJob.from_dict(fields)
                await self._run_handler(job, handler)
                await self._redis.xack(stream_name, group, entry_id)
                handled += 1
        return handled

    async def consume(
        self,
        queue_name: str,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
        batch_size: int = 10,
    ):
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        from redis.exceptions import RedisError

        await self._ensure_groups(queue_name, consumer_group)
        self._running = True
        logger.info("consumer_started",
                    queue=queue_name,
                    group=consumer_group,
                    consumer=consumer_name)

        # Re-deliver entries this consumer read before a restart but never acked
        redelivered = 0
        while True:
            pending = await self._read(queue_name, consumer_group, consumer_name,
                                       batch_size, "0", None)
            count = await self._process_batch(queue_name, pending, handler, consumer_group)
            if not count:
                break
            redelivered += count
        if redelivered:
            logger.info("pending_jobs_redelivered", queue=queue_name, count=redelivered)

        while self._running:
            try:
                entries = await self._read(queue_name, consumer_group, consumer_name,
                                           batch_size, ">", 2000)
                if entries:
                    await self._process_batch(queue_name, entries, handler, consumer_group)
            except asyncio.CancelledError:
                break
            except (RedisError, PersistenceError) as e:
                logger.error("consumer_error", queue=queue_name, error=str(e))
                await asyncio.sleep(1)

    async def dead_letter(self, job: QueueJob):
        await self._redis.xadd(dlq_name(job.queue_name), job.to_dict())

    async def dead_letters(self, queue_name: str, count: int = 100) -> list[QueueJob]:
        messages = await self._redis.xrange(dlq_name(queue_name), count=count)
        return [QueueJob.from_dict(fields) for _, fields in messages]

    async def queue_length(self, queue_name: str) -> int:
        total = 0
        for stream in self.stream_names(queue_name):
            total += await self._redis.xlen(stream)
        return total

    async def peek(self, queue_name: str, count: int = 10) -> list[QueueJob]:
        jobs: list[QueueJob] = []
        for stream in self.stream_names(queue_name):
            if len(jobs) >= count:
                break
            messages = await self._redis.xrange(stream, count=count - len(jobs))
            jobs.extend(QueueJob.from_dict(fields) for _, fields in messages)
        return jobs

    async def promote_delayed(self) -> int:
        """Move jobs whose scheduled_at <= now from the sorted set to their streams."""
        now = _utcnow().timestamp()
        ready = await self._redis.zrangebyscore(DELAYED_KEY, "-inf", now)

        if not ready:
            return 0

        pipe = self._redis.pipeline()
        for payload in ready:
            job = QueueJob.from_dict(json.loads(payload))
            pipe.xadd(f"{job.queue_name}:{_bucket(job.priority)}", job.to_dict())
            pipe.zrem(DELAYED_KEY, payload)
        await pipe.execute()

        logger.info("delayed_jobs_promoted", count=len(ready))
        return len(ready)


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue backed by asyncio primitives.
    Single-process only — no consumer groups or persistence.
    Each queue is a heap ordered by (priority, insertion sequence).
    """

    def __init__(self, promote_interval: float = 5):
        self._heaps: dict[str, list[tuple[int, int, QueueJob]]] = {}
        self._conditions: dict[str, asyncio.Condition] = {}
        self._delayed: list[tuple[float, int, QueueJob]] = []
        self._dlq: dict[str, list[QueueJob]] = {}
        self._seq = itertools.count()
        self._promote_interval = promote_interval
        self._running = False
        self._delayed_promoter_task: Optional[asyncio.Task] = None

    def _heap(self, name: str) -> list[tuple[int, int, QueueJob]]:
        return self._heaps.setdefault(name, [])

    def _condition(self, name: str) -> asyncio.Condition:
        if name not in self._conditions:
            self._conditions[name] = asyncio.Condition()
        return self._conditions[name]

    async def connect(self):
        self._running = True
        if self._promote_interval > 0:
            self._delayed_promoter_task = asyncio.create_task(self._promote_loop())
        logger.info("inmemory_queue_connected")

    async def close(self):
        self._running = False
        if self._delayed_promoter_task:
            self._delayed_promoter_task.cancel()
            try:
                await self._delayed_promoter_task
            except asyncio.CancelledError:
                pass
            self._delayed_promoter_task = None

    async def publish(self, job: QueueJob):
        cond = self._condition(job.queue_name)
        async with cond:
            heapq.heappush(self._heap(job.queue_name), (job.priority, next(self._seq), job))
            cond.notify()
        logger.info("job_published",
                    queue=job.queue_name,
                    job_id=job.job_id,
                    priority=job.priority)

    async def publish_delayed(self, job: QueueJob):
        score = _parse_time(job.scheduled_at).timestamp()
        heapq.heappush(self._delayed, (score, next(self._seq), job))
        logger.info("delayed_job_published",
                    job_id=job.job_id,
                    scheduled_at=job.scheduled_at)

    async def _take(self, queue_name: str, timeout: float) -> Optional[QueueJob]:
        cond = self._condition(queue_name)
        heap = self._heap(queue_name)
        async with cond:
            try:
                await asyncio.wait_for(cond.wait_for(lambda: bool(heap)), timeout)
            except asyncio.TimeoutError:
                return None
            return heapq.heappop(heap)[2]

    async def consume(
        self,
        queue_name: str,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
        batch_size: int = 10,
    ):
        self._running = True
        logger.info("consumer_started", queue=queue_name, consumer=consumer_name)

        while self._running:
            try:
                job = await self._take(queue_name, timeout=2.0)
                if job is not None:
                    await self._run_handler(job, handler)
            except asyncio.CancelledError:
                break

    async def process_pending(self, queue_name: str, handler: JobHandler) -> int:
        """Run the handler over every ready job, in priority order, then return."""
        heap = self._heap(queue_name)
        handled = 0
        while heap:
            job = heapq.heappop(heap)[2]
            await self._run_handler(job, handler)
            handled += 1
        return handled

    async def dead_letter(self, job: QueueJob):
        self._dlq.setdefault(dlq_name(job.queue_name), []).append(job)

    async def dead_letters(self, queue_name: str, count: int = 100) -> list[QueueJob]:
        return list(self._dlq.get(dlq_name(queue_name), []))[:count]

    async def queue_length(self, queue_name: str) -> int:
        return len(self._heap(queue_name))

    async def peek(self, queue_name: str, count: int = 10) -> list[QueueJob]:
        return [item[2] for item in heapq.nsmallest(count, self._heap(queue_name))]

    def delayed_jobs(self) -> list[QueueJob]:
        return [item[2] for item in sorted(self._delayed)]

    async def promote_delayed(self, now: Optional[float] = None) -> int:
        now = _utcnow().timestamp() if now is None else now
        ready = []
        while self._delayed and self._delayed[0][0] <= now:
            ready.append(heapq.heappop(self._delayed)[2])

        for job in ready:
            await self.publish(job)

        if ready:
            logger.info("delayed_jobs_promoted", count=len(ready))
        return len(ready)

    async def _promote_loop(self):
        """Background loop to promote delayed jobs."""
        while self._running:
            try:
                await self.promote_delayed()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("delayed_promote_error", error=str(e))
            await asyncio.sleep(self._promote_interval)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_message_queue(queue_config: Optional[dict[str, Any]] = None) -> MessageQueue:
    """Factory: create the appropriate queue backend (memory | redis)."""
    config = queue_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        url = config.get("redis_url", "redis://localhost:6379")
        return RedisMessageQueue(redis_url=url)
    if backend == "memory":
        return InMemoryMessageQueue(
            promote_interval=float(config.get("delayed_promote_interval", 5)),
        )
    raise ValueError(f"Unknown queue backend: {backend}")
