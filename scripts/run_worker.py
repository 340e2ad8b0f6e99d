#!/usr/bin/env python3
"""
Message Worker — consume queued message jobs and send them.

Usage:
    python scripts/run_worker.py                       # queues from settings
    python scripts/run_worker.py --queue email --queue sms
    python scripts/run_worker.py --concurrency 4 --config ./prod.yaml
"""
import argparse
import asyncio
import os
import signal
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run(queues: list[str], concurrency: int = None, config_path: str = None):
    import structlog
    from config.logging import configure_logging
    from config.settings import load_settings
    from core.bootstrap import build_dispatcher
    from job_queue.consumer import DelayedJobPromoter, MessageWorker

    settings = load_settings(config_path)
    configure_logging(settings.logging.level, settings.logging.json)
    logger = structlog.get_logger()

    dispatcher = await build_dispatcher(settings)
    worker = MessageWorker(
        dispatcher,
        dispatcher.queue_backend,
        queues or settings.dispatch.queues,
        consumer_group=settings.queue.consumer_group,
        consumer_name=f"{os.uname().nodename}-{os.getpid()}",
        concurrency=concurrency or settings.queue.consumer_concurrency,
    )
    promoter = DelayedJobPromoter(
        dispatcher.queue_backend,
        interval_seconds=settings.queue.delayed_promote_interval,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await promoter.start_background()
    await worker.start_background()
    logger.info("worker_running", queues=worker.queue_names)

    await stop.wait()

    logger.info("worker_shutting_down")
    await worker.stop()
    await promoter.stop()
    await dispatcher.close()


def main():
    parser = argparse.ArgumentParser(description="Run a message dispatch worker")
    parser.add_argument("--queue", action="append", default=[],
                        help="Queue name to consume (repeatable)")
    parser.add_argument("--concurrency", type=int, default=None,
                        help="Consumer tasks per queue")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    args = parser.parse_args()

    from dotenv import load_dotenv
    load_dotenv()

    asyncio.run(run(args.queue, args.concurrency, args.config))


if __name__ == "__main__":
    main()
