from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import make_observation, make_summary

from devmem.config import DevmemConfig
from devmem.errors import InferenceSkip, NotFoundError
from devmem.pipeline import MessageProcessor, MessageRouter, PendingMessage
from devmem.store import MemoryStore


def _msg(kind: str = "observation", session: str = "claude-1", **payload) -> PendingMessage:
    return PendingMessage(kind=kind, claude_session_id=session, payload=payload)


def test_messages_are_processed_in_fifo_order_even_when_first_blocks() -> None:
    release = threading.Event()
    seen: list[str] = []

    def process(message: PendingMessage) -> None:
        if message.payload["name"] == "m1":
            assert release.wait(5)
        seen.append(message.payload["name"])

    router = MessageRouter(process)
    for name in ("m1", "m2", "m3"):
        assert router.enqueue(_msg(name=name))
    release.set()

    assert router.wait_idle(5)
    assert seen == ["m1", "m2", "m3"]
    assert router.processed == 3


def test_enqueue_during_drain_does_not_start_second_drain() -> None:
    release = threading.Event()
    concurrent = 0
    peak = 0
    lock = threading.Lock()

    def process(message: PendingMessage) -> None:
        nonlocal concurrent, peak
        with lock:
            concurrent += 1
            peak = max(peak, concurrent)
        release.wait(5)
        with lock:
            concurrent -= 1

    router = MessageRouter(process)
    for index in range(5):
        router.enqueue(_msg(name=str(index)))
    assert router.draining
    assert router.active_drains == 1
    release.set()

    assert router.wait_idle(5)
    assert router.drains_started == 1
    assert router.max_concurrent_drains == 1
    assert peak == 1
    assert not router.draining


def test_drain_restarts_after_queue_empties() -> None:
    seen: list[str] = []
    router = MessageRouter(lambda message: seen.append(message.payload["name"]))

    router.enqueue(_msg(name="a"))
    assert router.wait_idle(5)
    router.enqueue(_msg(name="b"))
    assert router.wait_idle(5)

    assert seen == ["a", "b"]
    assert router.drains_started == 2
    assert router.max_concurrent_drains == 1


def test_failing_message_does_not_stop_the_drain(caplog: pytest.LogCaptureFixture) -> None:
    seen: list[str] = []

    def process(message: PendingMessage) -> None:
        if message.payload["name"] == "bad":
            raise RuntimeError("boom")
        seen.append(message.payload["name"])

    router = MessageRouter(process)
    with caplog.at_level("ERROR", logger="devmem.pipeline"):
        router.enqueue(_msg(name="ok-1"))
        router.enqueue(_msg(kind="summarize", session="claude-9", name="bad"))
        router.enqueue(_msg(name="ok-2"))
        assert router.wait_idle(5)

    assert seen == ["ok-1", "ok-2"]
    assert router.failed == 1
    assert router.processed == 2
    assert "Error processing summarize for claude-9" in caplog.text


def test_inference_skip_is_counted_not_failed() -> None:
    def process(message: PendingMessage) -> None:
        raise InferenceSkip("nothing to record")

    router = MessageRouter(process)
    router.enqueue(_msg())
    assert router.wait_idle(5)

    assert router.skipped == 1
    assert router.failed == 0


def test_shutdown_drops_queued_messages_after_timeout(caplog: pytest.LogCaptureFixture) -> None:
    started = threading.Event()
    release = threading.Event()
    seen: list[str] = []

    def process(message: PendingMessage) -> None:
        started.set()
        release.wait(5)
        seen.append(message.payload["name"])

    router = MessageRouter(process)
    for name in ("m1", "m2", "m3"):
        router.enqueue(_msg(name=name))
    assert started.wait(5)
    assert router.pending() == 2

    with caplog.at_level("WARNING", logger="devmem.pipeline"):
        dropped = router.shutdown(timeout=0.05)
    release.set()

    assert dropped == 2
    assert "dropped 2 queued messages" in caplog.text
    assert router.enqueue(_msg(name="late")) is False
    assert router.wait_idle(5)
    assert seen == ["m1"]


def test_shutdown_waits_for_in_flight_work() -> None:
    seen: list[str] = []
    router = MessageRouter(lambda message: seen.append(message.payload["name"]))
    router.enqueue(_msg(name="m1"))

    assert router.shutdown(timeout=5) == 0
    assert seen == ["m1"]


# MessageProcessor


@pytest.fixture
def session_store(tmp_path: Path):
    mem = MemoryStore(tmp_path / "mem.sqlite")
    mem.create_session("claude-1", "alpha", "Fix login").unwrap()
    try:
        yield mem
    finally:
        mem.close()


def _processor(store: MemoryStore, observer, embed=lambda _text: None) -> MessageProcessor:
    return MessageProcessor(store, observer, config=DevmemConfig(), embed=embed)


def test_observation_message_stores_candidate(session_store: MemoryStore) -> None:
    observer = MagicMock()
    observer.observe_tool.return_value = make_observation(discovery_tokens=321)
    processor = _processor(session_store, observer)

    result = processor(
        _msg(tool_name="Edit", tool_input={"file_path": "a.py"}, tool_response="ok", cwd="/w")
    )

    assert result == "stored"
    context = observer.observe_tool.call_args.args[0]
    assert context.project == "alpha"
    assert context.user_prompt == "Fix login"
    assert context.tool_events[0].tool_name == "Edit"
    stored = session_store.get_recent_observations(project="alpha").unwrap()
    assert len(stored) == 1
    assert stored[0].discovery_tokens == 321
    assert stored[0].prompt_number == 1


def test_observation_message_skips_duplicates(session_store: MemoryStore) -> None:
    observer = MagicMock()
    observer.observe_tool.side_effect = [make_observation(), make_observation()]
    processor = _processor(session_store, observer)

    assert processor(_msg(tool_name="Read")) == "stored"
    assert processor(_msg(tool_name="Read")) == "duplicate"
    assert len(session_store.get_recent_observations().unwrap()) == 1


def test_observation_message_stores_embedding(session_store: MemoryStore) -> None:
    observer = MagicMock()
    observer.observe_tool.return_value = make_observation()
    texts: list[str] = []

    def embed(text: str) -> bytes:
        texts.append(text)
        return b"\x00\x00\x80?"

    processor = _processor(session_store, observer, embed=embed)
    processor(_msg(tool_name="Read"))

    assert texts == ["Fixed auth token refresh Refresh tokens now rotate on every use."]
    assert session_store.stats().unwrap().embedded == 1


def test_observer_declining_raises_inference_skip(session_store: MemoryStore) -> None:
    observer = MagicMock()
    observer.observe_tool.return_value = None
    processor = _processor(session_store, observer)

    with pytest.raises(InferenceSkip):
        processor(_msg(tool_name="Read"))
    assert session_store.get_recent_observations().unwrap() == []


def test_unknown_session_is_not_found(session_store: MemoryStore) -> None:
    processor = _processor(session_store, MagicMock())

    with pytest.raises(NotFoundError):
        processor(_msg(session="missing", tool_name="Read"))


def test_summarize_message_stores_summary(session_store: MemoryStore) -> None:
    observer = MagicMock()
    observer.summarize.return_value = make_summary(discovery_tokens=50)
    processor = _processor(session_store, observer)

    result = processor(
        _msg(kind="summarize", last_user_message="fix it", last_assistant_message="done")
    )

    assert result == "stored"
    context = observer.summarize.call_args.args[0]
    assert context.include_summary is True
    assert context.last_assistant_message == "done"
    summaries = session_store.get_recent_summaries(project="alpha").unwrap()
    assert [s.completed for s in summaries] == ["Token refresh fixed"]
    assert summaries[0].discovery_tokens == 50


def test_complete_message_marks_session_completed(session_store: MemoryStore) -> None:
    observer = MagicMock()
    processor = _processor(session_store, observer)

    assert processor(_msg(kind="complete", reason="exit")) == "completed"

    session = session_store.get_session_by_external_id("claude-1").unwrap()
    assert session.status == "completed"
    observer.observe_tool.assert_not_called()
    observer.summarize.assert_not_called()
