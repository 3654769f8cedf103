"""Tests for Sentry event scrubbing and route-level HTTP metrics."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.meetroom.core.monitoring import MetricsMiddleware, _scrub_cookies


def test_scrub_removes_cookies():
    event = {
        "request": {
            "url": "http://testserver/api/v1/rooms/current",
            "cookies": {"meetroom_session": "token"},
            "headers": {"Cookie": "meetroom_session=token", "Accept": "application/json"},
        }
    }
    scrubbed = _scrub_cookies(event, {})
    assert "cookies" not in scrubbed["request"]
    assert scrubbed["request"]["headers"] == {"Accept": "application/json"}


def test_scrub_tolerates_events_without_request():
    assert _scrub_cookies({"message": "boom"}, {}) == {"message": "boom"}


@pytest.mark.asyncio
async def test_metrics_labelled_by_route_pattern():
    app = FastAPI()
    app.add_middleware(MetricsMiddleware)

    @app.delete("/things/{thing_id}", status_code=204)
    async def delete_thing(thing_id: str) -> None:
        return None

    labels = {"method": "DELETE", "endpoint": "/things/{thing_id}", "status_code": "204"}
    before = REGISTRY.get_sample_value("http_requests_total", labels) or 0.0

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        await client.delete("/things/a")
        await client.delete("/things/b")

    assert REGISTRY.get_sample_value("http_requests_total", labels) == before + 2
