from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from .. import db
from ..errors import NotFoundError, StorageFault, ValidationError
from ..xml_parser import ParsedObservation, ParsedSummary, normalize_observation_type
from . import dedup as store_dedup
from . import search as store_search
from .types import (
    CreatedSession,
    Observation,
    Outcome,
    Session,
    SessionSummary,
    StoreStats,
    UserPrompt,
)
from .utils import (
    OBSERVATION_COLUMNS,
    now_stamp,
    row_to_observation,
    row_to_prompt,
    row_to_session,
    row_to_summary,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

SESSION_STATUSES = ("active", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


class MemoryStore:
    """Owns the sessions, observations, summaries and prompts tables.

    Every public operation returns an `Outcome`. sqlite errors are rolled back,
    logged and surfaced as `StorageFault` instead of propagating.
    """

    def __init__(self, db_path: Path | str, *, check_same_thread: bool = True) -> None:
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        self.schema_version = db.apply_migrations(self.conn)

    def close(self) -> None:
        self.conn.close()

    def _attempt(self, operation: str, action: Callable[[], T]) -> Outcome[T]:
        try:
            value = action()
        except sqlite3.Error as exc:
            if self.conn.in_transaction:
                self.conn.rollback()
            logger.exception(
                "store operation failed",
                extra={"operation": operation},
                exc_info=exc,
            )
            return Outcome.failure(StorageFault(f"{operation} failed: {exc}"))
        return Outcome.success(value)

    # Sessions

    def create_session(
        self, claude_session_id: str, project: str, user_prompt: str | None = None
    ) -> Outcome[CreatedSession]:
        if not claude_session_id:
            return Outcome.failure(ValidationError("claude_session_id is required"))

        def _create() -> CreatedSession:
            now, epoch = now_stamp()
            cur = self.conn.execute(
                """
                INSERT OR IGNORE INTO sdk_sessions(
                    claude_session_id, project, user_prompt, started_at, started_at_epoch, status
                )
                VALUES (?, ?, ?, ?, ?, 'active')
                """,
                (claude_session_id, project, user_prompt, now, epoch),
            )
            is_new = cur.rowcount > 0
            row = self.conn.execute(
                "SELECT id FROM sdk_sessions WHERE claude_session_id = ?",
                (claude_session_id,),
            ).fetchone()
            self.conn.commit()
            return CreatedSession(id=int(row["id"]), is_new=is_new)

        return self._attempt("create_session", _create)

    def get_session_by_external_id(self, claude_session_id: str) -> Outcome[Session | None]:
        def _get() -> Session | None:
            row = self.conn.execute(
                "SELECT * FROM sdk_sessions WHERE claude_session_id = ?",
                (claude_session_id,),
            ).fetchone()
            return row_to_session(row) if row else None

        return self._attempt("get_session_by_external_id", _get)

    def get_session(self, session_id: int) -> Outcome[Session | None]:
        def _get() -> Session | None:
            row = self.conn.execute(
                "SELECT * FROM sdk_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            return row_to_session(row) if row else None

        return self._attempt("get_session", _get)

    def update_status(self, session_id: int, status: str) -> Outcome[bool]:
        """Move an active session to `status`. Returns whether a row changed."""
        if status not in SESSION_STATUSES:
            return Outcome.failure(ValidationError(f"invalid session status: {status}"))

        def _update() -> bool:
            if status in TERMINAL_STATUSES:
                now, epoch = now_stamp()
                cur = self.conn.execute(
                    """
                    UPDATE sdk_sessions
                    SET status = ?, completed_at = ?, completed_at_epoch = ?
                    WHERE id = ? AND status = 'active'
                    """,
                    (status, now, epoch, session_id),
                )
            else:
                cur = self.conn.execute(
                    "UPDATE sdk_sessions SET status = ? WHERE id = ?",
                    (status, session_id),
                )
            self.conn.commit()
            return cur.rowcount > 0

        return self._attempt("update_status", _update)

    def increment_prompt_counter(self, session_id: int) -> Outcome[int]:
        def _increment() -> int | None:
            row = self.conn.execute(
                """
                UPDATE sdk_sessions
                SET prompt_counter = prompt_counter + 1
                WHERE id = ?
                RETURNING prompt_counter
                """,
                (session_id,),
            ).fetchone()
            self.conn.commit()
            return int(row["prompt_counter"]) if row else None

        outcome = self._attempt("increment_prompt_counter", _increment)
        if outcome.ok and outcome.value is None:
            return Outcome.failure(NotFoundError(f"session {session_id} not found"))
        return outcome

    def delete_session(self, session_id: int) -> Outcome[bool]:
        def _delete() -> bool:
            cur = self.conn.execute("DELETE FROM sdk_sessions WHERE id = ?", (session_id,))
            self.conn.commit()
            return cur.rowcount > 0

        return self._attempt("delete_session", _delete)

    # Observations

    def _session_exists(self, claude_session_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sdk_sessions WHERE claude_session_id = ?",
            (claude_session_id,),
        ).fetchone()
        return row is not None

    def store_observation(
        self,
        claude_session_id: str,
        project: str,
        observation: ParsedObservation,
        prompt_number: int | None,
        discovery_tokens: int = 0,
        embedding: bytes | None = None,
    ) -> Outcome[int]:
        exists = self._attempt("store_observation", lambda: self._session_exists(claude_session_id))
        if not exists.ok:
            return Outcome.failure(exists.error)  # type: ignore[arg-type]
        if not exists.value:
            return Outcome.failure(NotFoundError(f"session {claude_session_id} not found"))

        def _insert() -> int:
            now, epoch = now_stamp()
            cur = self.conn.execute(
                """
                INSERT INTO observations(
                    sdk_session_id, project, type, title, subtitle, narrative,
                    facts, concepts, files_read, files_modified,
                    prompt_number, discovery_tokens, created_at, created_at_epoch, embedding
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claude_session_id,
                    project,
                    normalize_observation_type(observation.kind),
                    observation.title or None,
                    observation.subtitle or None,
                    observation.narrative or None,
                    db.to_json(observation.facts),
                    db.to_json(observation.concepts),
                    db.to_json(observation.files_read),
                    db.to_json(observation.files_modified),
                    prompt_number,
                    int(discovery_tokens or 0),
                    now,
                    epoch,
                    embedding,
                ),
            )
            self.conn.commit()
            if cur.lastrowid is None:
                raise sqlite3.DatabaseError("observation insert returned no row id")
            return int(cur.lastrowid)

        return self._attempt("store_observation", _insert)

    def get_observation_by_id(self, observation_id: int) -> Outcome[Observation | None]:
        def _get() -> Observation | None:
            row = self.conn.execute(
                f"SELECT {OBSERVATION_COLUMNS} FROM observations o WHERE o.id = ?",
                (observation_id,),
            ).fetchone()
            return row_to_observation(row) if row else None

        return self._attempt("get_observation_by_id", _get)

    def get_recent_observations(
        self, project: str | None = None, limit: int = 10
    ) -> Outcome[list[Observation]]:
        def _recent() -> list[Observation]:
            params: list[Any] = []
            where = ""
            if project:
                where = "WHERE o.project = ?"
                params.append(project)
            params.append(limit)
            rows = self.conn.execute(
                f"""
                SELECT {OBSERVATION_COLUMNS}
                FROM observations o
                {where}
                ORDER BY o.created_at_epoch DESC, o.id DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
            return [row_to_observation(row) for row in rows]

        return self._attempt("get_recent_observations", _recent)

    def set_observation_embedding(self, observation_id: int, embedding: bytes) -> Outcome[bool]:
        def _update() -> bool:
            cur = self.conn.execute(
                "UPDATE observations SET embedding = ? WHERE id = ?",
                (embedding, observation_id),
            )
            self.conn.commit()
            return cur.rowcount > 0

        return self._attempt("set_observation_embedding", _update)

    def get_observation_embedding(self, observation_id: int) -> Outcome[bytes | None]:
        def _get() -> bytes | None:
            row = self.conn.execute(
                "SELECT embedding FROM observations WHERE id = ?", (observation_id,)
            ).fetchone()
            return bytes(row["embedding"]) if row and row["embedding"] is not None else None

        return self._attempt("get_observation_embedding", _get)

    def delete_observation(self, observation_id: int) -> Outcome[bool]:
        def _delete() -> bool:
            cur = self.conn.execute("DELETE FROM observations WHERE id = ?", (observation_id,))
            self.conn.commit()
            return cur.rowcount > 0

        return self._attempt("delete_observation", _delete)

    # Summaries and prompts

    def store_summary(
        self,
        claude_session_id: str,
        project: str,
        summary: ParsedSummary,
        prompt_number: int | None,
        discovery_tokens: int = 0,
    ) -> Outcome[int]:
        exists = self._attempt("store_summary", lambda: self._session_exists(claude_session_id))
        if not exists.ok:
            return Outcome.failure(exists.error)  # type: ignore[arg-type]
        if not exists.value:
            return Outcome.failure(NotFoundError(f"session {claude_session_id} not found"))

        def _insert() -> int:
            now, epoch = now_stamp()
            cur = self.conn.execute(
                """
                INSERT INTO session_summaries(
                    sdk_session_id, project, request, investigated, learned, completed,
                    next_steps, notes, prompt_number, discovery_tokens, created_at, created_at_epoch
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claude_session_id,
                    project,
                    summary.request,
                    summary.investigated,
                    summary.learned,
                    summary.completed,
                    summary.next_steps,
                    summary.notes,
                    prompt_number,
                    int(discovery_tokens or 0),
                    now,
                    epoch,
                ),
            )
            self.conn.commit()
            if cur.lastrowid is None:
                raise sqlite3.DatabaseError("summary insert returned no row id")
            return int(cur.lastrowid)

        return self._attempt("store_summary", _insert)

    def get_recent_summaries(
        self, project: str | None = None, limit: int = 10
    ) -> Outcome[list[SessionSummary]]:
        def _recent() -> list[SessionSummary]:
            params: list[Any] = []
            where = ""
            if project:
                where = "WHERE project = ?"
                params.append(project)
            params.append(limit)
            rows = self.conn.execute(
                f"""
                SELECT * FROM session_summaries
                {where}
                ORDER BY created_at_epoch DESC, id DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
            return [row_to_summary(row) for row in rows]

        return self._attempt("get_recent_summaries", _recent)

    def save_user_prompt(
        self, claude_session_id: str, prompt_number: int, prompt_text: str
    ) -> Outcome[int]:
        exists = self._attempt("save_user_prompt", lambda: self._session_exists(claude_session_id))
        if not exists.ok:
            return Outcome.failure(exists.error)  # type: ignore[arg-type]
        if not exists.value:
            return Outcome.failure(NotFoundError(f"session {claude_session_id} not found"))

        def _insert() -> int:
            now, epoch = now_stamp()
            cur = self.conn.execute(
                """
                INSERT INTO user_prompts(
                    claude_session_id, prompt_number, prompt_text, created_at, created_at_epoch
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (claude_session_id, prompt_number, prompt_text, now, epoch),
            )
            self.conn.commit()
            if cur.lastrowid is None:
                raise sqlite3.DatabaseError("prompt insert returned no row id")
            return int(cur.lastrowid)

        return self._attempt("save_user_prompt", _insert)

    def get_prompts_for_session(self, claude_session_id: str) -> Outcome[list[UserPrompt]]:
        def _get() -> list[UserPrompt]:
            rows = self.conn.execute(
                """
                SELECT * FROM user_prompts
                WHERE claude_session_id = ?
                ORDER BY prompt_number ASC, id ASC
                """,
                (claude_session_id,),
            ).fetchall()
            return [row_to_prompt(row) for row in rows]

        return self._attempt("get_prompts_for_session", _get)

    # Search index and duplicate detection live in helper modules.

    def search_observations(
        self,
        query: str,
        project: str | None = None,
        concept: str | None = None,
        limit: int = 10,
    ) -> Outcome[list[Observation]]:
        return self._attempt(
            "search_observations",
            lambda: store_search.search_observations(
                self, query, project=project, concept=concept, limit=limit
            ),
        )

    def search_summaries(
        self, query: str, project: str | None = None, limit: int = 10
    ) -> Outcome[list[SessionSummary]]:
        return self._attempt(
            "search_summaries",
            lambda: store_search.search_summaries(self, query, project=project, limit=limit),
        )

    def search_prompts(
        self, query: str, project: str | None = None, limit: int = 10
    ) -> Outcome[list[UserPrompt]]:
        return self._attempt(
            "search_prompts",
            lambda: store_search.search_prompts(self, query, project=project, limit=limit),
        )

    def get_candidate_observations(
        self, limit: int, fts_query: str | None = None
    ) -> Outcome[list[Observation]]:
        return self._attempt(
            "get_candidate_observations",
            lambda: store_search.candidate_observations(self, limit, fts_query=fts_query),
        )

    def get_timeline(
        self, project: str | None = None, limit: int = 10, since_epoch: int | None = None
    ) -> Outcome[list[dict[str, Any]]]:
        return self._attempt(
            "get_timeline",
            lambda: store_search.timeline(
                self, project=project, limit=limit, since_epoch=since_epoch
            ),
        )

    def get_observations_by_file(self, path: str, limit: int = 10) -> Outcome[list[Observation]]:
        return self._attempt(
            "get_observations_by_file",
            lambda: store_search.observations_by_file(self, path, limit=limit),
        )

    def find_similar_observation(
        self,
        project: str,
        title: str,
        within_ms: int,
        embedding: bytes | None = None,
    ) -> Outcome[Observation | None]:
        return self._attempt(
            "find_similar_observation",
            lambda: store_dedup.find_similar(self, project, title, within_ms, embedding=embedding),
        )

    def stats(self) -> Outcome[StoreStats]:
        def _stats() -> StoreStats:
            def _count(sql: str) -> int:
                row = self.conn.execute(sql).fetchone()
                return int(row[0]) if row else 0

            by_type = {
                row["type"]: int(row["count"])
                for row in self.conn.execute(
                    "SELECT type, COUNT(*) AS count FROM observations GROUP BY type"
                ).fetchall()
            }
            return StoreStats(
                sessions=_count("SELECT COUNT(*) FROM sdk_sessions"),
                observations=_count("SELECT COUNT(*) FROM observations"),
                summaries=_count("SELECT COUNT(*) FROM session_summaries"),
                prompts=_count("SELECT COUNT(*) FROM user_prompts"),
                embedded=_count("SELECT COUNT(*) FROM observations WHERE embedding IS NOT NULL"),
                by_type=by_type,
            )

        return self._attempt("stats", _stats)
