from unittest.mock import patch

import httpx
import pytest

from conversai.services import http_client


def _resp(status):
    return httpx.Response(status, json={}, request=httpx.Request("POST", "https://api.example.test/posts"))


@pytest.fixture
def fake_client(monkeypatch):
    monkeypatch.setattr(http_client.time, "sleep", lambda s: None)
    with patch("conversai.services.http_client.httpx.Client") as client_cls:
        yield client_cls.return_value.__enter__.return_value


def test_reads_are_retried_on_server_errors(fake_client):
    fake_client.request.side_effect = [_resp(503), _resp(502), _resp(200)]

    resp = http_client.request_with_retry("GET", "https://api.example.test/posts", service="test")

    assert resp.status_code == 200
    assert fake_client.request.call_count == 3


def test_create_call_is_not_replayed_after_server_error(fake_client):
    fake_client.request.side_effect = [_resp(500), _resp(200)]

    resp = http_client.request_with_retry("POST", "https://api.example.test/posts", service="test",
                                          idempotent=False)

    assert resp.status_code == 500
    assert fake_client.request.call_count == 1


def test_create_call_is_retried_when_rate_limited(fake_client):
    fake_client.request.side_effect = [_resp(429), _resp(201)]

    resp = http_client.request_with_retry("POST", "https://api.example.test/posts", service="test",
                                          idempotent=False)

    assert resp.status_code == 201
    assert fake_client.request.call_count == 2


def test_create_call_read_timeout_is_raised_at_once(fake_client):
    fake_client.request.side_effect = httpx.ReadTimeout("timed out")

    with pytest.raises(httpx.ReadTimeout):
        http_client.request_with_retry("POST", "https://api.example.test/posts", service="test",
                                       idempotent=False)
    assert fake_client.request.call_count == 1


def test_create_call_retries_connection_failures(fake_client):
    fake_client.request.side_effect = [httpx.ConnectError("refused"), _resp(201)]

    resp = http_client.request_with_retry("POST", "https://api.example.test/posts", service="test",
                                          idempotent=False)

    assert resp.status_code == 201
