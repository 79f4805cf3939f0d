# tests/test_messaging_client.py
from http import HTTPStatus
from typing import Any, Dict

import httpx
import pytest

from engagement_crm.services import messaging_client as messaging_module
from engagement_crm.services.messaging_client import (
    MessagingClient,
    MessagingClientError,
    TemplateKind,
)


class _FakeResponse:
    def __init__(self, status_code: int, json_data: Any = None):
        self.status_code = status_code
        self._json_data = json_data
        self.text = str(json_data)

    def json(self) -> Any:
        if self._json_data is None:
            raise ValueError("no json")
        return self._json_data


class _FakeAsyncClient:
    """
    Minimal stand-in for httpx.AsyncClient capturing the last POST.
    """

    last_request: Dict[str, Any] = {}
    next_response: _FakeResponse = _FakeResponse(HTTPStatus.OK, {"id": "msg-1"})
    raise_error: Exception | None = None

    def __init__(self, timeout: float | None = None):
        _FakeAsyncClient.last_request = {"timeout": timeout}

    async def __aenter__(self) -> "_FakeAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, json=None, headers=None) -> _FakeResponse:
        _FakeAsyncClient.last_request.update({"url": url, "json": json, "headers": headers})
        if _FakeAsyncClient.raise_error is not None:
            raise _FakeAsyncClient.raise_error
        return _FakeAsyncClient.next_response


@pytest.fixture
def fake_httpx(monkeypatch):
    _FakeAsyncClient.last_request = {}
    _FakeAsyncClient.next_response = _FakeResponse(HTTPStatus.OK, {"id": "msg-1"})
    _FakeAsyncClient.raise_error = None
    monkeypatch.setattr(messaging_module.httpx, "AsyncClient", _FakeAsyncClient)
    return _FakeAsyncClient


@pytest.mark.asyncio
async def test_send_posts_template_with_idempotency_key(fake_httpx):
    client = MessagingClient("https://msg.example.com/send", api_token="tok", timeout_seconds=3)

    ack = await client.send(
        "+15550001",
        TemplateKind.EXPERIENCE_RATING,
        "experience_rating:7:1",
        {"first_name": "Ann"},
    )

    assert ack == {"id": "msg-1"}
    request = fake_httpx.last_request
    assert request["timeout"] == 3
    assert request["url"] == "https://msg.example.com/send"
    assert request["headers"]["Idempotency-Key"] == "experience_rating:7:1"
    assert request["headers"]["Authorization"] == "Bearer tok"
    assert request["json"] == {
        "recipient": "+15550001",
        "template": "experience_rating",
        "dedup_key": "experience_rating:7:1",
        "parameters": {"first_name": "Ann"},
    }


@pytest.mark.asyncio
async def test_non_2xx_raises_messaging_client_error(fake_httpx):
    fake_httpx.next_response = _FakeResponse(HTTPStatus.BAD_REQUEST, {"error": "bad recipient"})
    client = MessagingClient("https://msg.example.com/send")

    with pytest.raises(MessagingClientError):
        await client.send("x", TemplateKind.MISSED_MEETING, "k", {})


@pytest.mark.asyncio
async def test_transport_error_raises_messaging_client_error(fake_httpx):
    fake_httpx.raise_error = httpx.ConnectError("refused")
    client = MessagingClient("https://msg.example.com/send")

    with pytest.raises(MessagingClientError):
        await client.send("x", TemplateKind.MISSED_MEETING, "k", {})


@pytest.mark.asyncio
async def test_non_json_ack_is_empty_dict(fake_httpx):
    fake_httpx.next_response = _FakeResponse(HTTPStatus.ACCEPTED, None)
    client = MessagingClient("https://msg.example.com/send")

    assert await client.send("x", TemplateKind.MISSED_MEETING, "k", {}) == {}


def test_client_requires_url():
    with pytest.raises(ValueError):
        MessagingClient("")
