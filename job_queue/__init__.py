"""
Message Queue — Decouples message submission from delivery.

- The dispatcher PUBLISHES one job per push-mode message on its queueName
- Workers CONSUME jobs and hand them to dispatcher.process()
- Supports Redis Streams (production) and an in-memory priority heap (dev)
"""
from job_queue.message_queue import (
    PRIORITY_LEVELS, Backoff, QueueJob, MessageQueue,
    InMemoryMessageQueue, RedisMessageQueue,
    create_message_queue, dlq_name, priority_level,
)
from job_queue.consumer import MessageWorker, DelayedJobPromoter

__all__ = [
    "PRIORITY_LEVELS", "Backoff", "QueueJob", "MessageQueue",
    "InMemoryMessageQueue", "RedisMessageQueue",
    "create_message_queue", "dlq_name", "priority_level",
    "MessageWorker", "DelayedJobPromoter",
]
