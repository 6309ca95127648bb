import json
import logging

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from app.app_logging import _install_access_logging, _mask_phone, _scrub


def _create_app() -> FastAPI:
    app = FastAPI()

    @app.post("/api/webhooks/evolution/clinic")
    async def webhook(request: Request):
        request.state.tenant_id = "tenant-1"
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    @app.get("/api/events/stream")
    async def stream():  # pragma: no cover - simple
        return {"events": []}

    _install_access_logging(app)
    return app


def test_access_logging_request_id_and_scrubbing(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/api/webhooks/evolution/clinic",
            json={
                "apikey": "evo-secret",
                "data": {"key": {"remoteJid": "5511988887777@s.whatsapp.net"}},
            },
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        record = caplog.records[0]
        data = json.loads(record.getMessage())
        assert data["request_id"] == "abc"
        assert data["tenant_id"] == "tenant-1"
        assert data["headers"]["authorization"] == "***"
        assert data["body"]["apikey"] == "***"
        assert data["body"]["data"]["key"]["remoteJid"].endswith(".net")
        assert "5511988887777" not in record.getMessage()

        caplog.clear()
        client.get("/api/health")
        client.get("/api/events/stream")
        assert len(caplog.records) == 0


def test_request_id_is_generated_when_missing(caplog):
    app = _create_app()

    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.post("/api/webhooks/evolution/clinic", json={})

    assert len(resp.headers["X-Request-Id"]) == 32
    assert "body" not in json.loads(caplog.records[0].getMessage())


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("5511988887777", "*********7777"),
        ("1234", "1234"),
        (None, None),
    ],
)
def test_mask_phone(value, expected):
    assert _mask_phone(value) == expected


def test_scrub_nested_payloads():
    payload = {
        "Authorization": "Bearer x",
        "messages": [{"from": "5511988887777", "text": {"body": "hi"}}],
    }

    assert _scrub(payload) == {
        "Authorization": "***",
        "messages": [{"from": "*********7777", "text": {"body": "hi"}}],
    }
