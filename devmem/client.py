from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import DevmemConfig, load_config

DEFAULT_TIMEOUT_S = 5.0

logger = logging.getLogger(__name__)


class WorkerUnavailable(RuntimeError):
    pass


class WorkerClient:
    """Thin JSON client for a running worker, used by hooks and the CLI."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        config: DevmemConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if base_url is None:
            cfg = config or load_config()
            base_url = f"http://{cfg.worker_host}:{cfg.worker_port}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WorkerClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise WorkerUnavailable(f"worker unreachable at {self.base_url}: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {"error": response.text}
        if response.status_code >= 400:
            logger.warning(
                "worker request failed",
                extra={"path": path, "status": response.status_code, "error": body.get("error")},
            )
        body.setdefault("httpStatus", response.status_code)
        return body

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def observation(
        self,
        claude_session_id: str,
        tool_name: str,
        tool_input: Any,
        tool_response: Any,
        cwd: str | None = None,
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/observation",
            json={
                "claudeSessionId": claude_session_id,
                "toolName": tool_name,
                "toolInput": tool_input,
                "toolResponse": tool_response,
                "cwd": cwd,
            },
        )

    def prompt(self, claude_session_id: str, prompt: str, cwd: str | None = None) -> dict[str, Any]:
        return self._request(
            "POST",
            "/prompt",
            json={"claudeSessionId": claude_session_id, "prompt": prompt, "cwd": cwd},
        )

    def summary(
        self,
        claude_session_id: str,
        last_user_message: str,
        last_assistant_message: str | None = None,
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/summary",
            json={
                "claudeSessionId": claude_session_id,
                "lastUserMessage": last_user_message,
                "lastAssistantMessage": last_assistant_message,
            },
        )

    def complete(self, claude_session_id: str, reason: str = "exit") -> dict[str, Any]:
        return self._request(
            "POST",
            "/complete",
            json={"claudeSessionId": claude_session_id, "reason": reason},
        )

    def context(
        self,
        project: str,
        *,
        limit: int = 10,
        context_format: str = "index",
        since: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"project": project, "limit": limit, "format": context_format}
        if since:
            params["since"] = since
        return self._request("GET", "/context", params=params)

    def search(
        self,
        query: str,
        *,
        search_type: str = "observations",
        project: str | None = None,
        concept: str | None = None,
        limit: int = 10,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"query": query, "type": search_type, "limit": limit}
        if project:
            params["project"] = project
        if concept:
            params["concept"] = concept
        return self._request("GET", "/search", params=params)
