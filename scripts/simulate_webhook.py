#!/usr/bin/env python3
"""Fire a fake narrator event at a webhook ingestor."""

import argparse
import uuid
from datetime import datetime, timezone

import httpx


def main():
    parser = argparse.ArgumentParser(description="Simulate a Screen Narrator webhook")
    parser.add_argument("--url", default="http://localhost:3003/webhook")
    parser.add_argument("--event-type", choices=["ALARM", "CHECKIN"], default="ALARM")
    parser.add_argument("--description", default="The build pipeline on screen turned red.")
    parser.add_argument("--capture-number", type=int, default=1)
    parser.add_argument("--mode", choices=["checkin", "notification"], default="notification")
    args = parser.parse_args()

    payload = {
        "eventType": args.event_type,
        "data": {
            "description": args.description,
            "screenshotPath": None,
            "captureNumber": args.capture_number,
            "sessionId": f"simulated-{uuid.uuid4()}",
            "eventTimestamp": datetime.now(timezone.utc).isoformat(),
            "mode": args.mode,
        },
    }

    resp = httpx.post(args.url, json=payload)
    print(f"Status: {resp.status_code}")
    print(f"Response: {resp.json()}")


if __name__ == "__main__":
    main()
