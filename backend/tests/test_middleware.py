"""
WalkLog Backend — Middleware Tests
====================================

What:  Rate limiting scope and request ID propagation.
How:   A minimal FastAPI app carrying only the middleware under test, so
       the limits can be tiny.
"""

import logging

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from walklog.middleware.logging import level_for_status
from walklog.middleware.rate_limit import RateLimitMiddleware
from walklog.middleware.request_id import RequestIDMiddleware


def build_app(max_requests: int = 2) -> FastAPI:
    app = FastAPI()

    @app.get("/api/images/{key:path}")
    async def read_image(key: str):
        return {"key": key}

    @app.post("/api/images/upload")
    async def upload():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.add_middleware(
        RateLimitMiddleware,
        max_requests=max_requests,
        window_seconds=60,
        read_prefix="/api/images",
    )
    app.add_middleware(RequestIDMiddleware)
    return app


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_uploads_limited(self):
        transport = ASGITransport(app=build_app(max_requests=2))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.post("/api/images/upload")).status_code == 200
            assert (await client.post("/api/images/upload")).status_code == 200
            response = await client.post("/api/images/upload")

        assert response.status_code == 429
        assert int(response.headers["retry-after"]) >= 1
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["kind"] == "RateLimitExceeded"
        assert body["request_id"] == response.headers["x-request-id"]

    @pytest.mark.asyncio
    async def test_image_reads_exempt(self):
        transport = ASGITransport(app=build_app(max_requests=2))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for _ in range(10):
                response = await client.get("/api/images/walks/a.jpg")
                assert response.status_code == 200

            # Reads did not use up the write budget
            assert (await client.post("/api/images/upload")).status_code == 200

    @pytest.mark.asyncio
    async def test_health_exempt(self):
        transport = ASGITransport(app=build_app(max_requests=2))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for _ in range(5):
                assert (await client.get("/health")).status_code == 200


class TestRequestId:

    @pytest.mark.asyncio
    async def test_generated_when_absent(self):
        transport = ASGITransport(app=build_app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
        assert len(response.headers["x-request-id"]) == 8

    @pytest.mark.asyncio
    async def test_blank_header_replaced(self):
        transport = ASGITransport(app=build_app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "  "})
        assert response.headers["x-request-id"].strip()


class TestAccessLogLevel:

    def test_levels(self):
        assert level_for_status(200) == logging.INFO
        assert level_for_status(404) == logging.WARNING
        assert level_for_status(503) == logging.ERROR
