#!/usr/bin/env python3
"""
Enqueue Message — build a message from CLI flags and queue (or send) it.

Usage:
    python scripts/enqueue_message.py --from ops@example.com --to a@example.com \\
        --subject "Deploy" --body "Deploy finished" --transport log

    # Mark as sent without invoking a transport:
    python scripts/enqueue_message.py --from a@x.com --to b@x.com --body hi --fake

    # Send inline instead of queueing:
    python scripts/enqueue_message.py ... --send
"""
import argparse
import asyncio
import json
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run(args) -> int:
    from config.logging import configure_logging
    from config.settings import load_settings
    from core.bootstrap import build_dispatcher
    from models.errors import MessageError
    from models.message import Message

    settings = load_settings(args.config)
    configure_logging(settings.logging.level, settings.logging.json)

    message = Message(
        type=args.type,
        mode=args.mode,
        sender=args.sender,
        to=args.to,
        cc=args.cc,
        subject=args.subject,
        body=args.body,
        priority=args.priority,
        options=json.loads(args.options) if args.options else {},
    )

    dispatcher = await build_dispatcher(settings)
    try:
        if args.transport:
            dispatcher.assign_transport(message, args.transport)
        if args.fake or args.send:
            message = await dispatcher.send(message, fake=args.fake)
            print(json.dumps(message.to_document(), indent=2))
            return 0
        job = await dispatcher.queue(message)
        print(json.dumps({
            "message_id": message.id,
            "queue": message.queue_name,
            "job_id": job.job_id if job else None,
        }, indent=2))
        return 0
    except MessageError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        await dispatcher.close()


def main():
    parser = argparse.ArgumentParser(description="Queue or send a single message")
    parser.add_argument("--from", dest="sender", required=True)
    parser.add_argument("--to", action="append", required=True)
    parser.add_argument("--cc", action="append", default=[])
    parser.add_argument("--subject", default=None)
    parser.add_argument("--body", required=True)
    parser.add_argument("--type", default="EMAIL", choices=["EMAIL", "SMS", "PUSH"])
    parser.add_argument("--mode", default="Push", choices=["Push", "Pull"])
    parser.add_argument("--priority", default="normal",
                        choices=["low", "normal", "medium", "high", "critical"])
    parser.add_argument("--transport", default=None, help="Registered transport name")
    parser.add_argument("--options", default=None, help="Transport options as JSON")
    parser.add_argument("--fake", action="store_true", help="Mark sent without a transport")
    parser.add_argument("--send", action="store_true", help="Send inline instead of queueing")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    args = parser.parse_args()

    from dotenv import load_dotenv
    load_dotenv()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
