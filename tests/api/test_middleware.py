"""Tests for RequestIDMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.base import request_id_of, success_response
from api.middleware import RequestIDMiddleware


@pytest.fixture
def app():
    """Minimal FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        return JSONResponse({"request_id": request.state.request_id})

    @app.get("/envelope")
    async def envelope(request: Request):
        return success_response({"ok": True}, request_id_of(request)).model_dump(mode="json")

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRequestIDMiddleware:

    def test_response_has_request_id_header(self, client):
        response = client.get("/test")

        UUID(response.headers["X-Request-ID"])

    def test_request_state_matches_header(self, client):
        response = client.get("/test")

        assert response.headers["X-Request-ID"] == response.json()["request_id"]

    def test_each_request_gets_unique_id(self, client):
        r1 = client.get("/test")
        r2 = client.get("/test")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]

    def test_inbound_id_is_kept(self, client):
        response = client.get("/test", headers={"X-Request-ID": "lb-7f3a"})

        assert response.headers["X-Request-ID"] == "lb-7f3a"
        assert response.json()["request_id"] == "lb-7f3a"

    def test_oversized_inbound_id_replaced(self, client):
        response = client.get("/test", headers={"X-Request-ID": "x" * 500})

        UUID(response.headers["X-Request-ID"])

    def test_envelope_meta_carries_same_id(self, client):
        response = client.get("/envelope")

        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]


class TestRequestIdOf:

    def test_none_request(self):
        assert request_id_of(None) is None
