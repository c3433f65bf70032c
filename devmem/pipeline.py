"""Ordered processing of ingested events.

`MessageRouter` keeps a FIFO queue and at most one drain thread. Enqueueing starts
a drain only when none is running; the drain exits once the queue is empty. There
is no polling: an idle router has no threads.

Messages still queued when `shutdown` gives up waiting are dropped, and so is
anything queued when the process dies. Nothing is persisted before processing.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from .config import DevmemConfig
from .errors import InferenceSkip, NotFoundError
from .observer_prompts import ObserverContext, ToolEvent
from .semantic import build_embedding_text, embed_text
from .store import MemoryStore, Session
from .xml_parser import ParsedObservation, ParsedSummary

MessageKind = Literal["observation", "summarize", "complete"]

logger = logging.getLogger(__name__)


@dataclass
class PendingMessage:
    kind: MessageKind
    claude_session_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class MessageRouter:
    def __init__(self, process: Callable[[PendingMessage], Any]) -> None:
        self._process = process
        self._queue: deque[PendingMessage] = deque()
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._drain_thread: threading.Thread | None = None
        self._in_flight: PendingMessage | None = None
        self._active_drains = 0
        self._closed = False
        self.drains_started = 0
        self.max_concurrent_drains = 0
        self.processed = 0
        self.skipped = 0
        self.failed = 0

    def enqueue(self, message: PendingMessage) -> bool:
        with self._lock:
            if self._closed:
                logger.warning(
                    "router is shut down; dropping message",
                    extra={"kind": message.kind, "claude_session_id": message.claude_session_id},
                )
                return False
            self._queue.append(message)
            if self._drain_thread is not None:
                return True
            self._idle.clear()
            self._active_drains += 1
            self.drains_started += 1
            self.max_concurrent_drains = max(self.max_concurrent_drains, self._active_drains)
            thread = threading.Thread(target=self._drain, name="devmem-drain", daemon=True)
            self._drain_thread = thread
        thread.start()
        return True

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._drain_thread = None
                    self._active_drains -= 1
                    self._in_flight = None
                    self._idle.set()
                    return
                message = self._queue.popleft()
                self._in_flight = message
            try:
                self._process(message)
            except InferenceSkip as skip:
                logger.debug(
                    "skipped %s for %s: %s",
                    message.kind,
                    message.claude_session_id,
                    skip,
                )
                with self._lock:
                    self.skipped += 1
            except Exception as exc:
                logger.exception(
                    "Error processing %s for %s",
                    message.kind,
                    message.claude_session_id,
                    extra={"kind": message.kind, "claude_session_id": message.claude_session_id},
                    exc_info=exc,
                )
                with self._lock:
                    self.failed += 1
            else:
                with self._lock:
                    self.processed += 1

    def pending(self) -> int:
        """Messages waiting in the queue, not counting the one being processed."""
        with self._lock:
            return len(self._queue)

    @property
    def draining(self) -> bool:
        with self._lock:
            return self._drain_thread is not None

    @property
    def active_drains(self) -> int:
        with self._lock:
            return self._active_drains

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def shutdown(self, timeout: float = 5.0) -> int:
        """Stop accepting work, wait up to `timeout` for the drain, return the number dropped."""
        with self._lock:
            self._closed = True
        finished = self._idle.wait(timeout)
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
            in_flight = self._in_flight
        if dropped or not finished:
            logger.warning(
                "shutdown timed out; dropped %d queued messages",
                dropped,
                extra={
                    "dropped": dropped,
                    "in_flight": in_flight.kind if in_flight else None,
                },
            )
        return dropped


class InferenceCapability(Protocol):
    def observe_tool(self, context: ObserverContext) -> ParsedObservation | None: ...

    def summarize(self, context: ObserverContext) -> ParsedSummary | None: ...


def _resolve_session(store: MemoryStore, claude_session_id: str) -> Session:
    session = store.get_session_by_external_id(claude_session_id).unwrap()
    if session is None:
        raise NotFoundError(f"session {claude_session_id} not found")
    return session


class MessageProcessor:
    """Turns one queued message into stored records.

    Returns "stored", "duplicate" or "completed". Raises InferenceSkip when the
    observer records nothing.
    """

    def __init__(
        self,
        store: MemoryStore,
        observer: InferenceCapability,
        config: DevmemConfig | None = None,
        embed: Callable[[str], bytes | None] = embed_text,
    ) -> None:
        self.store = store
        self.observer = observer
        self.config = config or DevmemConfig()
        self.embed = embed

    def __call__(self, message: PendingMessage) -> str:
        if message.kind == "observation":
            return self._observation(message)
        if message.kind == "summarize":
            return self._summarize(message)
        if message.kind == "complete":
            return self._complete(message)
        raise ValueError(f"unknown message kind: {message.kind}")

    def _observation(self, message: PendingMessage) -> str:
        session = _resolve_session(self.store, message.claude_session_id)
        payload = message.payload
        context = ObserverContext(
            project=session.project,
            user_prompt=session.user_prompt,
            prompt_number=session.prompt_counter,
            tool_events=[
                ToolEvent(
                    tool_name=str(payload.get("tool_name") or ""),
                    tool_input=payload.get("tool_input"),
                    tool_output=payload.get("tool_response"),
                    cwd=payload.get("cwd"),
                )
            ],
        )
        candidate = self.observer.observe_tool(context)
        if candidate is None:
            raise InferenceSkip(f"nothing recorded for {payload.get('tool_name') or 'tool'}")

        embedding = self.embed(build_embedding_text(candidate.title, candidate.narrative))
        similar = self.store.find_similar_observation(
            session.project,
            candidate.title,
            self.config.dedup_window_ms,
            embedding=embedding,
        ).unwrap()
        if similar is not None:
            logger.info(
                "skipping duplicate observation %r (similar to #%d)",
                candidate.title,
                similar.id,
            )
            return "duplicate"

        self.store.store_observation(
            session.claude_session_id,
            session.project,
            candidate,
            prompt_number=session.prompt_counter,
            discovery_tokens=candidate.discovery_tokens,
            embedding=embedding,
        ).unwrap()
        return "stored"

    def _summarize(self, message: PendingMessage) -> str:
        session = _resolve_session(self.store, message.claude_session_id)
        context = ObserverContext(
            project=session.project,
            user_prompt=session.user_prompt,
            prompt_number=session.prompt_counter,
            last_user_message=message.payload.get("last_user_message"),
            last_assistant_message=message.payload.get("last_assistant_message"),
            include_summary=True,
        )
        summary = self.observer.summarize(context)
        if summary is None:
            raise InferenceSkip("no summary produced")
        self.store.store_summary(
            session.claude_session_id,
            session.project,
            summary,
            prompt_number=session.prompt_counter,
            discovery_tokens=summary.discovery_tokens,
        ).unwrap()
        return "stored"

    def _complete(self, message: PendingMessage) -> str:
        session = _resolve_session(self.store, message.claude_session_id)
        self.store.update_status(session.id, "completed").unwrap()
        return "completed"
