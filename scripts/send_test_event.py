#!/usr/bin/env python3
"""Deliver one test event through the retry/circuit-breaker path and print the outcome."""

import argparse
import asyncio
import json
from datetime import datetime, timezone

from narrator.models.schemas import EventType, NotificationEvent, WebhookConfig
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.health import get_status
from narrator.pipeline.notifier import WebhookNotifier
from narrator.utils.logging import setup_logging


async def main(url: str, event_type: str, timeout_ms: int, retries: int):
    setup_logging()

    config = WebhookConfig(
        enabled=True,
        url=url,
        send_on_alarm=True,
        send_on_checkin=True,
        timeout_ms=timeout_ms,
        max_retries=retries,
    )
    breaker = CircuitBreaker()
    notifier = WebhookNotifier(breaker)
    event = NotificationEvent(
        event_type=EventType(event_type),
        description="Test event from send_test_event.py",
        capture_number=0,
        session_id="send-test-event",
        event_timestamp=datetime.now(timezone.utc),
    )

    result = await notifier.deliver(event.event_type, event, config)
    print(f"Result: {json.dumps(result.model_dump(mode='json'), indent=2)}")
    print(f"Health: {get_status(config, breaker).model_dump_json(indent=2)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a test webhook event")
    parser.add_argument("url")
    parser.add_argument("--event-type", choices=["ALARM", "CHECKIN"], default="CHECKIN")
    parser.add_argument("--timeout-ms", type=int, default=5000)
    parser.add_argument("--retries", type=int, default=3)
    args = parser.parse_args()
    asyncio.run(main(args.url, args.event_type, args.timeout_ms, args.retries))
