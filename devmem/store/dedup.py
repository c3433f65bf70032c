from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING

from .types import Observation
from .utils import OBSERVATION_COLUMNS, row_to_observation

if TYPE_CHECKING:
    from ._store import MemoryStore

WINDOW_CANDIDATES = 20
EMBEDDING_SIMILARITY_THRESHOLD = 0.92
TITLE_SIMILARITY_THRESHOLD = 0.8

_WORD_RE = re.compile(r"[a-z0-9]+")


def title_words(title: str) -> set[str]:
    return set(_WORD_RE.findall(title.lower()))


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _title_match_query(words: set[str]) -> str:
    return " OR ".join(f'title : "{word}"' for word in sorted(words))


def _vector_match(
    store: MemoryStore,
    project: str,
    cutoff: int,
    embedding: bytes,
) -> tuple[Observation | None, set[int]]:
    """Judge windowed rows that carry a vector. Returns the match and the ids judged."""
    rows = store.conn.execute(
        f"""
        SELECT {OBSERVATION_COLUMNS},
               1 - vec_distance_cosine(o.embedding, ?) AS similarity
        FROM observations o
        WHERE o.project = ?
          AND o.created_at_epoch > ?
          AND o.embedding IS NOT NULL
          AND vec_length(o.embedding) = vec_length(?)
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
        """,
        (embedding, project, cutoff, embedding, WINDOW_CANDIDATES),
    ).fetchall()
    judged: set[int] = set()
    for row in rows:
        judged.add(int(row["id"]))
        if row["similarity"] >= EMBEDDING_SIMILARITY_THRESHOLD:
            return row_to_observation(row), judged
    return None, judged


def _title_match(
    store: MemoryStore,
    project: str,
    cutoff: int,
    words: set[str],
    skip_ids: set[int],
) -> Observation | None:
    rows = store.conn.execute(
        f"""
        SELECT {OBSERVATION_COLUMNS}, observations_fts.rank AS fts_rank
        FROM observations_fts
        JOIN observations o ON o.id = observations_fts.rowid
        WHERE observations_fts MATCH ? AND o.project = ? AND o.created_at_epoch > ?
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
        """,
        (_title_match_query(words), project, cutoff, WINDOW_CANDIDATES),
    ).fetchall()
    for row in rows:
        if int(row["id"]) in skip_ids:
            continue
        if jaccard_similarity(words, title_words(row["title"] or "")) > TITLE_SIMILARITY_THRESHOLD:
            return row_to_observation(row)
    return None


def find_similar(
    store: MemoryStore,
    project: str,
    title: str,
    within_ms: int,
    embedding: bytes | None = None,
    now_ms: int | None = None,
) -> Observation | None:
    """Most recent observation in `project` within `within_ms` that duplicates `title`.

    Rows that carry a vector are judged only by cosine similarity when the new
    observation also has one. All other rows are found through the title column
    of the search index and confirmed by word overlap.
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    cutoff = now - within_ms
    judged: set[int] = set()
    if embedding:
        match, judged = _vector_match(store, project, cutoff, embedding)
        if match:
            return match
    words = title_words(title)
    if not words:
        return None
    return _title_match(store, project, cutoff, words, judged)
