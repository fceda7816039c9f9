from __future__ import annotations

import math

from narrator.models.schemas import WebhookConfig, WebhookHealth
from narrator.pipeline.breaker import CircuitBreaker


def get_status(config: WebhookConfig, breaker: CircuitBreaker) -> WebhookHealth:
    """Summarize webhook health for the management UI. Does not change breaker state."""
    if not config.enabled:
        return WebhookHealth(status="disabled", message="Webhook notifications are disabled")

    if not config.url or not config.url.strip():
        return WebhookHealth(status="not_configured", message="No webhook URL configured")

    state = breaker.snapshot()

    if state.is_open:
        retry_in = math.ceil(breaker.seconds_until_retry())
        probes_left = breaker.probes_remaining()
        if probes_left:
            message = f"Circuit breaker open after {state.consecutive_failures} failures, retry in {retry_in}s"
        else:
            message = f"Circuit breaker open after {state.consecutive_failures} failures, probe budget exhausted"
        return WebhookHealth(
            status="circuit_open",
            message=message,
            details={
                "consecutive_failures": state.consecutive_failures,
                "seconds_until_retry": retry_in,
                "probes_remaining": probes_left,
                "last_failure_time": state.last_failure_time,
            },
        )

    if state.consecutive_failures > 0:
        return WebhookHealth(
            status="degraded",
            message=f"{state.consecutive_failures} recent delivery failure(s)",
            details={
                "consecutive_failures": state.consecutive_failures,
                "failure_threshold": breaker.failure_threshold,
                "last_failure_time": state.last_failure_time,
            },
        )

    return WebhookHealth(
        status="healthy",
        message="Webhook is healthy",
        details={"url": config.url},
    )
