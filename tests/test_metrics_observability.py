from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import Request, Response
from prometheus_client import REGISTRY

import app.main as main_module
from app.core.metrics import (
    PAYMENT_SETUPS_TOTAL,
    build_metrics_response,
    instrument_http_request,
)


def _make_request(path: str, route_path: str | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "headers": [],
        "client": ("127.0.0.1", 12345),
        "scheme": "http",
        "server": ("testserver", 80),
        "query_string": b"",
    }
    if route_path is not None:
        scope["route"] = SimpleNamespace(path=route_path)
    return Request(scope)


@pytest.mark.asyncio
async def test_request_metrics_use_route_template_not_session_id() -> None:
    async def _conflict(_: Request) -> Response:
        return Response(status_code=409)

    request = _make_request(
        "/api/v1/booking/sessions/6f1c1a52-0000-4000-8000-000000000001/confirm",
        route_path="/api/v1/booking/sessions/{session_id}/confirm",
    )
    await instrument_http_request(request, _conflict)

    count = REGISTRY.get_sample_value(
        "tutormarket_http_requests_total",
        {"method": "POST", "path": "/api/v1/booking/sessions/{session_id}/confirm", "status_code": "409"},
    )
    assert count is not None and count >= 1
    assert "6f1c1a52" not in build_metrics_response().body.decode("utf-8")


@pytest.mark.asyncio
async def test_failed_handler_is_counted_as_500() -> None:
    async def _boom(_: Request) -> Response:
        raise RuntimeError("processor unreachable")

    with pytest.raises(RuntimeError):
        await instrument_http_request(_make_request("/api/v1/payments/unrouted"), _boom)

    count = REGISTRY.get_sample_value(
        "tutormarket_http_requests_total",
        {"method": "POST", "path": "/api/v1/payments/unrouted", "status_code": "500"},
    )
    assert count is not None and count >= 1


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_booking_and_payout_counters() -> None:
    PAYMENT_SETUPS_TOTAL.labels(payment_type="deferred").inc()

    response = await main_module.metrics_endpoint(_make_request("/metrics"))
    payload = response.body.decode("utf-8")

    assert response.status_code == 200
    assert "tutormarket_booking_conflicts_total" in payload
    assert 'tutormarket_payment_setups_total{payment_type="deferred"}' in payload
    assert "tutormarket_transfer_outcomes_total" in payload
