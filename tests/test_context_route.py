from __future__ import annotations

from conftest import make_observation

from devmem.config import DevmemConfig
from devmem.store import MemoryStore
from devmem.worker_routes.context import build_context


def _seed_two_projects(store: MemoryStore) -> None:
    store.create_session("claude-a", "alpha", "Fix login").unwrap()
    store.create_session("claude-b", "beta", "Tune cache").unwrap()
    store.store_observation(
        "claude-a", "alpha", make_observation(title="Fixed auth token refresh"), prompt_number=1
    ).unwrap()
    store.store_observation(
        "claude-b",
        "beta",
        make_observation(title="Cache warms on boot", kind="feature"),
        prompt_number=1,
    ).unwrap()


def test_cross_project_includes_other_projects(store: MemoryStore) -> None:
    _seed_two_projects(store)

    result = build_context(store, DevmemConfig(cross_project=True), "beta")

    assert result["observationCount"] == 2
    assert "Cache warms on boot" in result["context"]
    assert "Fixed auth token refresh" in result["context"]


def test_without_cross_project_only_current_project(store: MemoryStore) -> None:
    _seed_two_projects(store)

    result = build_context(store, DevmemConfig(cross_project=False), "beta")

    assert result["observationCount"] == 1
    assert "Cache warms on boot" in result["context"]
    assert "Fixed auth token refresh" not in result["context"]


def test_without_cross_project_other_rows_leave_context_empty(store: MemoryStore) -> None:
    store.create_session("claude-a", "alpha", "Fix login").unwrap()
    store.store_observation("claude-a", "alpha", make_observation(), prompt_number=1).unwrap()

    result = build_context(store, DevmemConfig(cross_project=False), "gamma")

    assert result["observationCount"] == 0
    assert "No previous sessions found" in result["context"]
    assert "Fixed auth token refresh" not in result["context"]


def test_zero_halflife_still_renders(store: MemoryStore) -> None:
    _seed_two_projects(store)

    result = build_context(store, DevmemConfig(recency_halflife_days=0), "alpha")

    assert result["observationCount"] == 2
