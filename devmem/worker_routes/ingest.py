from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import NotFoundError, StorageFault
from ..pipeline import PendingMessage
from ..sanitize import clean_prompt, is_entirely_private, strip_private_obj
from ..store import MemoryStore, Session
from ..utils import resolve_project
from ..validation import require_text

if TYPE_CHECKING:
    from ..worker import WorkerService

logger = logging.getLogger(__name__)

POST_PATHS = ("/observation", "/prompt", "/summary", "/complete")


class _WorkerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def _session_or_404(store: MemoryStore, claude_session_id: str) -> Session:
    session = store.get_session_by_external_id(claude_session_id).unwrap()
    if session is None:
        raise NotFoundError("Session not found")
    return session


def _enqueue(service: WorkerService, message: PendingMessage) -> None:
    if not service.router.enqueue(message):
        raise StorageFault("worker is shutting down")


def _queue_observation(
    handler: _WorkerHandler, service: WorkerService, payload: dict[str, Any]
) -> None:
    claude_session_id = require_text(payload, "claudeSessionId")
    tool_name = require_text(payload, "toolName")
    if tool_name in service.config.skip_tools:
        handler._send_json({"status": "skipped", "reason": "tool", "toolName": tool_name})
        return

    cwd = payload.get("cwd")
    store = service.store
    session = store.get_session_by_external_id(claude_session_id).unwrap()
    if session is None:
        project = resolve_project(cwd, service.project_cache)
        store.create_session(claude_session_id, project).unwrap()
        logger.debug("created session %s for tool event", claude_session_id)

    _enqueue(
        service,
        PendingMessage(
            kind="observation",
            claude_session_id=claude_session_id,
            payload={
                "tool_name": tool_name,
                "tool_input": strip_private_obj(payload.get("toolInput")),
                "tool_response": strip_private_obj(payload.get("toolResponse")),
                "cwd": cwd if isinstance(cwd, str) else None,
            },
        ),
    )
    handler._send_json(
        {"status": "queued", "claudeSessionId": claude_session_id, "toolName": tool_name}
    )


def _store_prompt(
    handler: _WorkerHandler, service: WorkerService, payload: dict[str, Any]
) -> None:
    claude_session_id = require_text(payload, "claudeSessionId")
    raw_prompt = require_text(payload, "prompt")
    if is_entirely_private(raw_prompt):
        handler._send_json(
            {"status": "skipped", "reason": "private", "claudeSessionId": claude_session_id}
        )
        return
    prompt = clean_prompt(raw_prompt)

    store = service.store
    session = store.get_session_by_external_id(claude_session_id).unwrap()
    if session is None:
        project = resolve_project(payload.get("cwd"), service.project_cache)
        created = store.create_session(claude_session_id, project, user_prompt=prompt).unwrap()
        if created is None:
            raise StorageFault(f"Session {claude_session_id} could not be created")
        if created.is_new:
            prompt_number = 1
        else:
            # Another request created the session first; this is a continuation.
            prompt_number = store.increment_prompt_counter(created.id).unwrap()
    else:
        prompt_number = store.increment_prompt_counter(session.id).unwrap()

    if prompt_number is None:
        raise StorageFault(f"Prompt counter missing for session {claude_session_id}")
    store.save_user_prompt(claude_session_id, prompt_number, prompt).unwrap()
    handler._send_json(
        {"status": "stored", "claudeSessionId": claude_session_id, "promptNumber": prompt_number}
    )


def _queue_summary(
    handler: _WorkerHandler, service: WorkerService, payload: dict[str, Any]
) -> None:
    claude_session_id = require_text(payload, "claudeSessionId")
    _session_or_404(service.store, claude_session_id)
    last_user = payload.get("lastUserMessage")
    last_assistant = payload.get("lastAssistantMessage")
    _enqueue(
        service,
        PendingMessage(
            kind="summarize",
            claude_session_id=claude_session_id,
            payload={
                "last_user_message": clean_prompt(last_user) if isinstance(last_user, str) else None,
                "last_assistant_message": (
                    clean_prompt(last_assistant) if isinstance(last_assistant, str) else None
                ),
            },
        ),
    )
    handler._send_json({"status": "queued", "claudeSessionId": claude_session_id})


def _complete_session(
    handler: _WorkerHandler, service: WorkerService, payload: dict[str, Any]
) -> None:
    claude_session_id = require_text(payload, "claudeSessionId")
    _session_or_404(service.store, claude_session_id)
    reason = payload.get("reason")
    # Queued behind any pending work for the session so its records land first.
    _enqueue(
        service,
        PendingMessage(
            kind="complete",
            claude_session_id=claude_session_id,
            payload={"reason": reason},
        ),
    )
    handler._send_json(
        {"status": "completed", "claudeSessionId": claude_session_id, "reason": reason}
    )


def handle_post(
    handler: _WorkerHandler, service: WorkerService, path: str, payload: dict[str, Any]
) -> bool:
    if path == "/observation":
        _queue_observation(handler, service, payload)
        return True
    if path == "/prompt":
        _store_prompt(handler, service, payload)
        return True
    if path == "/summary":
        _queue_summary(handler, service, payload)
        return True
    if path == "/complete":
        _complete_session(handler, service, payload)
        return True
    return False
