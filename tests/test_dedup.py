from __future__ import annotations

import sqlite_vec
from conftest import make_observation

from devmem.store import MemoryStore
from devmem.store.dedup import find_similar, jaccard_similarity, title_words

HOUR_MS = 3_600_000


def _store_obs(store: MemoryStore, title: str, embedding: bytes | None = None, project="alpha"):
    return store.store_observation(
        "claude-1",
        project,
        make_observation(title=title),
        prompt_number=1,
        embedding=embedding,
    ).unwrap()


def _vector(*values: float) -> bytes:
    return sqlite_vec.serialize_float32(list(values))


def test_title_words_and_jaccard() -> None:
    assert title_words("Fixed the Auth-token bug!") == {"fixed", "the", "auth", "token", "bug"}
    assert jaccard_similarity({"a", "b"}, {"a", "b"}) == 1.0
    assert jaccard_similarity({"a", "b"}, {"b", "c"}) == 1 / 3
    assert jaccard_similarity(set(), {"a"}) == 0.0


def test_identical_title_is_duplicate(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    obs_id = _store_obs(store, "Fixed auth token refresh")

    match = store.find_similar_observation("alpha", "fixed auth token refresh", HOUR_MS).unwrap()

    assert match is not None
    assert match.id == obs_id


def test_different_title_is_not_duplicate(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    _store_obs(store, "Fixed auth token refresh")

    match = store.find_similar_observation("alpha", "Fixed auth cookie parsing", HOUR_MS).unwrap()

    assert match is None


def test_duplicates_are_project_scoped(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    _store_obs(store, "Fixed auth token refresh", project="beta")

    assert store.find_similar_observation("alpha", "Fixed auth token refresh", HOUR_MS).unwrap() is None


def test_window_excludes_old_observations(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    obs_id = _store_obs(store, "Fixed auth token refresh")
    store.conn.execute(
        "UPDATE observations SET created_at_epoch = created_at_epoch - ? WHERE id = ?",
        (2 * HOUR_MS, obs_id),
    )
    store.conn.commit()

    assert store.find_similar_observation("alpha", "Fixed auth token refresh", HOUR_MS).unwrap() is None


def test_vectors_take_precedence_when_both_sides_have_one(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    # Same title, orthogonal vector: the vector verdict wins.
    _store_obs(store, "Fixed auth token refresh", embedding=_vector(1.0, 0.0, 0.0))

    match = find_similar(
        store,
        "alpha",
        "Fixed auth token refresh",
        HOUR_MS,
        embedding=_vector(0.0, 1.0, 0.0),
    )

    assert match is None


def test_close_vectors_match_despite_different_titles(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    obs_id = _store_obs(store, "Token refresh rotation", embedding=_vector(1.0, 0.1, 0.0))

    match = find_similar(
        store,
        "alpha",
        "Completely different wording",
        HOUR_MS,
        embedding=_vector(1.0, 0.12, 0.0),
    )

    assert match is not None
    assert match.id == obs_id


def test_rows_without_vectors_fall_back_to_titles(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    obs_id = _store_obs(store, "Fixed auth token refresh")

    match = find_similar(
        store,
        "alpha",
        "Fixed auth token refresh",
        HOUR_MS,
        embedding=_vector(0.0, 1.0, 0.0),
    )

    assert match is not None
    assert match.id == obs_id


def test_most_recent_duplicate_is_returned(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    _store_obs(store, "Fixed auth token refresh")
    newest = _store_obs(store, "Fixed auth token refresh")

    match = store.find_similar_observation("alpha", "Fixed auth token refresh", HOUR_MS).unwrap()

    assert match.id == newest


def test_title_without_words_never_matches(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    _store_obs(store, "!!!")

    assert store.find_similar_observation("alpha", "!!!", HOUR_MS).unwrap() is None


def test_vectors_of_another_dimension_fall_back_to_titles(store: MemoryStore) -> None:
    store.create_session("claude-1", "alpha").unwrap()
    obs_id = _store_obs(store, "Fixed auth token refresh", embedding=_vector(1.0, 0.0))

    match = find_similar(
        store,
        "alpha",
        "Fixed auth token refresh",
        HOUR_MS,
        embedding=_vector(0.0, 1.0, 0.0),
    )

    assert match is not None
    assert match.id == obs_id
