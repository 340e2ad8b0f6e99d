"""
Composition root — wire store, queue, transports and events from settings.

Usage:
    settings = load_settings()
    dispatcher = await build_dispatcher(settings)
    ...
    await dispatcher.close()
"""
from __future__ import annotations

import structlog
from dataclasses import asdict
from typing import Optional

from config.settings import Settings, get_settings
from core.dispatcher import MessageDispatcher
from core.events import MessageEvents
from database.store_factory import create_store
from job_queue.message_queue import create_message_queue
from transports.factory import build_registry, transport_configs

logger = structlog.get_logger()


async def build_dispatcher(
    settings: Optional[Settings] = None,
    events: Optional[MessageEvents] = None,
) -> MessageDispatcher:
    settings = settings or get_settings()
    events = events or MessageEvents()

    store = create_store(asdict(settings.database))
    queue = create_message_queue(asdict(settings.queue))
    await queue.connect()

    registry = build_registry(settings)
    await registry.initialize_all(transport_configs(settings))

    logger.info("dispatcher_ready",
                store=settings.database.store_backend,
                queue=settings.queue.backend,
                transports=registry.names())
    return MessageDispatcher(
        store=store,
        queue=queue,
        registry=registry,
        events=events,
        config=settings.dispatch,
    )
