from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..semantic import build_embedding_text, embed_texts, get_embedding_client

if TYPE_CHECKING:
    from ._store import MemoryStore


def backfill_embeddings(
    store: MemoryStore,
    limit: int | None = None,
    project: str | None = None,
    dry_run: bool = False,
    batch_size: int = 32,
) -> dict[str, int]:
    """Embed observations that have no vector yet, oldest first."""
    client = get_embedding_client()
    if not client:
        return {"checked": 0, "embedded": 0, "skipped": 0}
    params: list[Any] = []
    where = ["embedding IS NULL"]
    if project:
        where.append("project = ?")
        params.append(project)
    limit_clause = ""
    if limit:
        limit_clause = "LIMIT ?"
        params.append(limit)
    rows = store.conn.execute(
        f"""
        SELECT id, title, narrative
        FROM observations
        WHERE {" AND ".join(where)}
        ORDER BY created_at_epoch ASC, id ASC
        {limit_clause}
        """,
        params,
    ).fetchall()
    checked = 0
    embedded = 0
    skipped = 0
    pending: list[tuple[int, str]] = []
    for row in rows:
        checked += 1
        text = build_embedding_text(row["title"], row["narrative"])
        if not text:
            skipped += 1
            continue
        pending.append((int(row["id"]), text))
    if dry_run:
        return {"checked": checked, "embedded": len(pending), "skipped": skipped}
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        vectors = embed_texts([text for _, text in batch])
        for (observation_id, _), vector in zip(batch, vectors):
            outcome = store.set_observation_embedding(observation_id, vector)
            if outcome.ok and outcome.value:
                embedded += 1
            else:
                skipped += 1
    return {"checked": checked, "embedded": embedded, "skipped": skipped}
