from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .types import Observation, SessionSummary, UserPrompt
from .utils import OBSERVATION_COLUMNS, row_to_observation, row_to_prompt, row_to_summary

if TYPE_CHECKING:
    from ._store import MemoryStore


def search_observations(
    store: MemoryStore,
    query: str,
    project: str | None = None,
    concept: str | None = None,
    limit: int = 10,
) -> list[Observation]:
    """Full-text search over title, subtitle, narrative, facts and concepts.

    `query` is passed to FTS5 as-is; callers handling user input escape it first.
    The concept filter matches list entries case-insensitively.
    """
    params: list[Any] = [query]
    clauses = ["observations_fts MATCH ?"]
    if project:
        clauses.append("o.project = ?")
        params.append(project)
    if concept:
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(o.concepts) WHERE LOWER(json_each.value) = LOWER(?))"
        )
        params.append(concept)
    params.append(limit)
    rows = store.conn.execute(
        f"""
        SELECT {OBSERVATION_COLUMNS}, observations_fts.rank AS fts_rank
        FROM observations_fts
        JOIN observations o ON o.id = observations_fts.rowid
        WHERE {" AND ".join(clauses)}
        ORDER BY observations_fts.rank
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [row_to_observation(row) for row in rows]


def search_summaries(
    store: MemoryStore,
    query: str,
    project: str | None = None,
    limit: int = 10,
) -> list[SessionSummary]:
    params: list[Any] = [query]
    clauses = ["session_summaries_fts MATCH ?"]
    if project:
        clauses.append("s.project = ?")
        params.append(project)
    params.append(limit)
    rows = store.conn.execute(
        f"""
        SELECT s.*, session_summaries_fts.rank AS fts_rank
        FROM session_summaries_fts
        JOIN session_summaries s ON s.id = session_summaries_fts.rowid
        WHERE {" AND ".join(clauses)}
        ORDER BY session_summaries_fts.rank
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [row_to_summary(row) for row in rows]


def search_prompts(
    store: MemoryStore,
    query: str,
    project: str | None = None,
    limit: int = 10,
) -> list[UserPrompt]:
    params: list[Any] = [query]
    clauses = ["user_prompts_fts MATCH ?"]
    if project:
        clauses.append("s.project = ?")
        params.append(project)
    params.append(limit)
    rows = store.conn.execute(
        f"""
        SELECT p.*, s.project AS project, user_prompts_fts.rank AS fts_rank
        FROM user_prompts_fts
        JOIN user_prompts p ON p.id = user_prompts_fts.rowid
        JOIN sdk_sessions s ON s.claude_session_id = p.claude_session_id
        WHERE {" AND ".join(clauses)}
        ORDER BY user_prompts_fts.rank
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [row_to_prompt(row) for row in rows]


def candidate_observations(
    store: MemoryStore,
    limit: int,
    fts_query: str | None = None,
) -> list[Observation]:
    """Cross-project candidates for re-ranking.

    With a text query the rows carry the search rank in `fts_rank`; without one
    they are the most recent rows and `fts_rank` is 0.
    """
    if fts_query:
        rows = store.conn.execute(
            f"""
            SELECT {OBSERVATION_COLUMNS}, observations_fts.rank AS fts_rank
            FROM observations_fts
            JOIN observations o ON o.id = observations_fts.rowid
            WHERE observations_fts MATCH ?
            ORDER BY observations_fts.rank
            LIMIT ?
            """,
            (fts_query, limit),
        ).fetchall()
    else:
        rows = store.conn.execute(
            f"""
            SELECT {OBSERVATION_COLUMNS}, 0 AS fts_rank
            FROM observations o
            ORDER BY o.created_at_epoch DESC, o.id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    return [row_to_observation(row) for row in rows]


def timeline(
    store: MemoryStore,
    project: str | None = None,
    limit: int = 10,
    since_epoch: int | None = None,
) -> list[dict[str, Any]]:
    """Observations and summaries merged newest first."""
    params: list[Any] = []
    clauses: list[str] = []
    if project:
        clauses.append("project = ?")
        params.append(project)
    if since_epoch is not None:
        clauses.append("created_at_epoch >= ?")
        params.append(since_epoch)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = store.conn.execute(
        f"""
        SELECT id, created_at_epoch AS epoch, 'observation' AS kind, type, title,
               narrative, project
        FROM observations
        {where}
        UNION ALL
        SELECT id, created_at_epoch AS epoch, 'summary' AS kind, 'session' AS type,
               request AS title, COALESCE(completed, learned) AS narrative, project
        FROM session_summaries
        {where}
        ORDER BY epoch DESC, id DESC
        LIMIT ?
        """,
        [*params, *params, limit],
    ).fetchall()
    return [dict(row) for row in rows]


def observations_by_file(store: MemoryStore, path: str, limit: int = 10) -> list[Observation]:
    """Observations whose read or modified file lists contain `path` exactly."""
    rows = store.conn.execute(
        f"""
        SELECT {OBSERVATION_COLUMNS}
        FROM observations o
        WHERE EXISTS (SELECT 1 FROM json_each(o.files_modified) WHERE json_each.value = ?)
           OR EXISTS (SELECT 1 FROM json_each(o.files_read) WHERE json_each.value = ?)
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
        """,
        (path, path, limit),
    ).fetchall()
    return [row_to_observation(row) for row in rows]
