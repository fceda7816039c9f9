from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from narrator.models.schemas import DeliveryResult, EventType, NotificationEvent, WebhookConfig
from narrator.pipeline import sender
from narrator.pipeline.breaker import CircuitBreaker

logger = structlog.get_logger()

SendFn = Callable[[str, dict, int], Awaitable[DeliveryResult]]
SleepFn = Callable[[float], Awaitable[None]]


def backoff_ms(attempt: int, base_ms: int = 1000, cap_ms: int = 5000) -> int:
    """Delay after the given 1-based failed attempt: 1s, 2s, 4s, then capped."""
    return min(base_ms * 2 ** (attempt - 1), cap_ms)


class WebhookNotifier:
    """Delivers notification events with retries, guarded by a circuit breaker."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        send: SendFn | None = None,
        sleep: SleepFn = asyncio.sleep,
        backoff_base_ms: int = 1000,
        backoff_cap_ms: int = 5000,
        user_agent: str = sender.DEFAULT_USER_AGENT,
    ):
        self.breaker = breaker
        self._send = send or self._default_send
        self._sleep = sleep
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.user_agent = user_agent

    async def _default_send(self, url: str, payload: dict, timeout_ms: int) -> DeliveryResult:
        return await sender.send(url, payload, timeout_ms, user_agent=self.user_agent)

    async def deliver(
        self,
        event_type: EventType,
        event: NotificationEvent,
        config: WebhookConfig,
    ) -> DeliveryResult:
        event_type = EventType(event_type)
        log = logger.bind(event_type=event_type.value, capture_number=event.capture_number)

        if not config.enabled:
            log.debug("webhook_skipped", reason="disabled")
            return DeliveryResult.silent_failure("disabled")

        if not config.url or not config.url.strip():
            log.debug("webhook_skipped", reason="not_configured")
            return DeliveryResult.silent_failure("not_configured")

        if not config.sends(event_type):
            log.debug("webhook_skipped", reason="event_type_excluded")
            return DeliveryResult.silent_failure("event_type_excluded")

        permission = self.breaker.is_allowed()
        if not permission.allowed:
            log.info(
                "webhook_skipped",
                reason="circuit_breaker_open",
                retry_in_seconds=round(self.breaker.seconds_until_retry()),
            )
            return DeliveryResult.silent_failure("circuit_breaker_open", circuit_breaker_open=True)

        payload = event.to_payload()
        result: DeliveryResult | None = None

        for attempt in range(1, config.max_retries + 1):
            result = await self._send(config.url, payload, config.timeout_ms)
            result = result.model_copy(update={"attempts": attempt})

            if result.success:
                self.breaker.report_outcome(True)
                log.info(
                    "webhook_delivered",
                    status=result.http_status,
                    attempt=attempt,
                    breaker_state=permission.state.value,
                )
                return result

            if not result.retryable:
                self.breaker.report_outcome(False)
                log.error(
                    "webhook_rejected",
                    error_kind=result.error_kind.value if result.error_kind else None,
                    status=result.http_status,
                    reason=result.reason,
                    attempt=attempt,
                )
                return result

            if attempt < config.max_retries:
                delay = backoff_ms(attempt, self.backoff_base_ms, self.backoff_cap_ms)
                log.warning(
                    "webhook_retrying",
                    error_kind=result.error_kind.value if result.error_kind else None,
                    attempt=attempt,
                    max_retries=config.max_retries,
                    delay_ms=delay,
                )
                await self._sleep(delay / 1000)

        self.breaker.report_outcome(False)
        log.error(
            "webhook_failed",
            error_kind=result.error_kind.value if result.error_kind else None,
            reason=result.reason,
            attempts=config.max_retries,
            consecutive_failures=self.breaker.snapshot().consecutive_failures,
        )
        return result
