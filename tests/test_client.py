from __future__ import annotations

import json

import httpx
import pytest

from devmem.client import WorkerClient, WorkerUnavailable


def _client(handler) -> WorkerClient:
    return WorkerClient("http://worker.test", transport=httpx.MockTransport(handler))


def test_observation_posts_camel_case_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "queued"})

    with _client(handler) as client:
        result = client.observation("claude-1", "Edit", {"file_path": "a.py"}, "ok", cwd="/w")

    assert result == {"status": "queued", "httpStatus": 200}
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/observation"
    assert json.loads(seen[0].content) == {
        "claudeSessionId": "claude-1",
        "toolName": "Edit",
        "toolInput": {"file_path": "a.py"},
        "toolResponse": "ok",
        "cwd": "/w",
    }


def test_context_and_search_send_query_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"results": [], "count": 0})

    with _client(handler) as client:
        client.context("alpha", limit=5, context_format="full", since="2d")
        client.search("auth", project="alpha", concept="gotcha")

    assert dict(seen[0].url.params) == {
        "project": "alpha",
        "limit": "5",
        "format": "full",
        "since": "2d",
    }
    assert seen[1].url.path == "/search"
    assert dict(seen[1].url.params) == {
        "query": "auth",
        "type": "observations",
        "limit": "10",
        "project": "alpha",
        "concept": "gotcha",
    }


def test_error_status_is_returned_with_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Session not found"})

    with _client(handler) as client:
        result = client.complete("claude-1")

    assert result == {"error": "Session not found", "httpStatus": 404}


def test_non_json_body_becomes_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with _client(handler) as client:
        assert client.health() == {"error": "bad gateway", "httpStatus": 502}


def test_connection_failure_raises_worker_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client, pytest.raises(WorkerUnavailable, match="worker.test"):
        client.health()


def test_base_url_defaults_to_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVMEM_PORT", "4567")
    client = WorkerClient()
    try:
        assert client.base_url == "http://127.0.0.1:4567"
    finally:
        client.close()
