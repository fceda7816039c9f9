from __future__ import annotations

import pytest

from narrator.models.schemas import WebhookConfig
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.health import get_status


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(clock=clock)


def _config(**overrides):
    values = {"enabled": True, "url": "https://hooks.example.test/narrator"}
    values.update(overrides)
    return WebhookConfig(**values)


def test_disabled_takes_precedence(breaker):
    for _ in range(5):
        breaker.report_outcome(False)
    status = get_status(_config(enabled=False, url=""), breaker)
    assert status.status == "disabled"


def test_not_configured(breaker):
    assert get_status(_config(url=""), breaker).status == "not_configured"
    assert get_status(_config(url=None), breaker).status == "not_configured"


def test_healthy(breaker):
    status = get_status(_config(), breaker)
    assert status.status == "healthy"


def test_degraded_below_threshold(breaker):
    breaker.report_outcome(False)
    breaker.report_outcome(False)

    status = get_status(_config(), breaker)

    assert status.status == "degraded"
    assert status.details["consecutive_failures"] == 2


def test_circuit_open_reports_retry_eta(breaker, clock):
    for _ in range(5):
        breaker.report_outcome(False)
    clock.advance(100)

    status = get_status(_config(), breaker)

    assert status.status == "circuit_open"
    assert status.details["seconds_until_retry"] == 200
    assert status.details["consecutive_failures"] == 5
    assert status.details["probes_remaining"] == 3
    assert "retry in 200s" in status.message


def test_get_status_is_pure_and_idempotent(breaker, clock):
    for _ in range(5):
        breaker.report_outcome(False)
    clock.advance(400)
    config = _config()

    first = get_status(config, breaker)
    second = get_status(config, breaker)

    assert first == second
    # Reading status never spends a half-open probe
    assert breaker.snapshot().half_open_probes_used == 0
