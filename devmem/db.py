from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

import sqlite_vec

OBSERVATION_TYPES = ("decision", "bugfix", "feature", "refactor", "discovery", "change")

logger = logging.getLogger(__name__)


def sqlite_vec_version(conn: sqlite3.Connection) -> str | None:
    try:
        row = conn.execute("select vec_version()").fetchone()
    except sqlite3.Error:
        return None
    if not row or row[0] is None:
        return None
    return str(row[0])


def _load_sqlite_vec(conn: sqlite3.Connection) -> None:
    try:
        conn.enable_load_extension(True)
    except AttributeError as exc:
        raise RuntimeError(
            "sqlite-vec requires a Python SQLite build that supports extension loading. "
            "Install a Python build with enable_load_extension and try again."
        ) from exc
    try:
        sqlite_vec.load(conn)
        if sqlite_vec_version(conn) is None:
            raise RuntimeError("sqlite-vec loaded but version check failed")
    except Exception as exc:  # pragma: no cover
        message = "Failed to load sqlite-vec extension; duplicate detection by vector needs it."
        if "ELFCLASS32" in str(exc):
            message = (
                "Failed to load sqlite-vec extension (ELFCLASS32). "
                "On Linux aarch64, PyPI may ship a 32-bit vec0.so; "
                "replace it with the 64-bit loadable."
            )
        raise RuntimeError(message) from exc
    finally:
        try:
            conn.enable_load_extension(False)
        except AttributeError:
            pass


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    _load_sqlite_vec(conn)
    return conn


_TYPE_CHECK = ", ".join(f"'{kind}'" for kind in OBSERVATION_TYPES)

_V1_CORE_TABLES = f"""
CREATE TABLE IF NOT EXISTS sdk_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claude_session_id TEXT UNIQUE NOT NULL,
    sdk_session_id TEXT UNIQUE,
    project TEXT NOT NULL,
    user_prompt TEXT,
    started_at TEXT NOT NULL,
    started_at_epoch INTEGER NOT NULL,
    completed_at TEXT,
    completed_at_epoch INTEGER,
    status TEXT CHECK(status IN ('active', 'completed', 'failed')) NOT NULL DEFAULT 'active',
    prompt_counter INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sdk_session_id TEXT NOT NULL,
    project TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN ({_TYPE_CHECK})),
    title TEXT,
    subtitle TEXT,
    narrative TEXT,
    facts TEXT NOT NULL DEFAULT '[]',
    concepts TEXT NOT NULL DEFAULT '[]',
    files_read TEXT NOT NULL DEFAULT '[]',
    files_modified TEXT NOT NULL DEFAULT '[]',
    prompt_number INTEGER,
    discovery_tokens INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL,
    FOREIGN KEY(sdk_session_id) REFERENCES sdk_sessions(claude_session_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS session_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sdk_session_id TEXT NOT NULL,
    project TEXT NOT NULL,
    request TEXT,
    investigated TEXT,
    learned TEXT,
    completed TEXT,
    next_steps TEXT,
    notes TEXT,
    prompt_number INTEGER,
    discovery_tokens INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL,
    FOREIGN KEY(sdk_session_id) REFERENCES sdk_sessions(claude_session_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_prompts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claude_session_id TEXT NOT NULL,
    prompt_number INTEGER NOT NULL,
    prompt_text TEXT NOT NULL,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL,
    FOREIGN KEY(claude_session_id) REFERENCES sdk_sessions(claude_session_id) ON DELETE CASCADE
);
"""

_V2_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_sdk_sessions_project ON sdk_sessions(project);
CREATE INDEX IF NOT EXISTS idx_sdk_sessions_status ON sdk_sessions(status);
CREATE INDEX IF NOT EXISTS idx_sdk_sessions_started ON sdk_sessions(started_at_epoch DESC);
CREATE INDEX IF NOT EXISTS idx_observations_session ON observations(sdk_session_id);
CREATE INDEX IF NOT EXISTS idx_observations_project ON observations(project);
CREATE INDEX IF NOT EXISTS idx_observations_type ON observations(type);
CREATE INDEX IF NOT EXISTS idx_observations_created ON observations(created_at_epoch DESC);
CREATE INDEX IF NOT EXISTS idx_summaries_session ON session_summaries(sdk_session_id);
CREATE INDEX IF NOT EXISTS idx_summaries_project ON session_summaries(project);
CREATE INDEX IF NOT EXISTS idx_summaries_created ON session_summaries(created_at_epoch DESC);
CREATE INDEX IF NOT EXISTS idx_user_prompts_session ON user_prompts(claude_session_id);
CREATE INDEX IF NOT EXISTS idx_user_prompts_created ON user_prompts(created_at_epoch DESC);
"""

_V3_SEARCH_INDEX = """
CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
    title, subtitle, narrative, facts, concepts,
    content='observations',
    content_rowid='id'
);

CREATE VIRTUAL TABLE IF NOT EXISTS session_summaries_fts USING fts5(
    request, investigated, learned, completed, next_steps, notes,
    content='session_summaries',
    content_rowid='id'
);

CREATE VIRTUAL TABLE IF NOT EXISTS user_prompts_fts USING fts5(
    prompt_text,
    content='user_prompts',
    content_rowid='id'
);
"""

# Update triggers remove the old indexed values before inserting the new ones.
_V4_SYNC_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS observations_ai AFTER INSERT ON observations BEGIN
    INSERT INTO observations_fts(rowid, title, subtitle, narrative, facts, concepts)
    VALUES (new.id, new.title, new.subtitle, new.narrative, new.facts, new.concepts);
END;

CREATE TRIGGER IF NOT EXISTS observations_ad AFTER DELETE ON observations BEGIN
    INSERT INTO observations_fts(observations_fts, rowid, title, subtitle, narrative, facts, concepts)
    VALUES ('delete', old.id, old.title, old.subtitle, old.narrative, old.facts, old.concepts);
END;

CREATE TRIGGER IF NOT EXISTS observations_au AFTER UPDATE ON observations BEGIN
    INSERT INTO observations_fts(observations_fts, rowid, title, subtitle, narrative, facts, concepts)
    VALUES ('delete', old.id, old.title, old.subtitle, old.narrative, old.facts, old.concepts);
    INSERT INTO observations_fts(rowid, title, subtitle, narrative, facts, concepts)
    VALUES (new.id, new.title, new.subtitle, new.narrative, new.facts, new.concepts);
END;

CREATE TRIGGER IF NOT EXISTS session_summaries_ai AFTER INSERT ON session_summaries BEGIN
    INSERT INTO session_summaries_fts(rowid, request, investigated, learned, completed, next_steps, notes)
    VALUES (new.id, new.request, new.investigated, new.learned, new.completed, new.next_steps, new.notes);
END;

CREATE TRIGGER IF NOT EXISTS session_summaries_ad AFTER DELETE ON session_summaries BEGIN
    INSERT INTO session_summaries_fts(session_summaries_fts, rowid, request, investigated, learned, completed, next_steps, notes)
    VALUES ('delete', old.id, old.request, old.investigated, old.learned, old.completed, old.next_steps, old.notes);
END;

CREATE TRIGGER IF NOT EXISTS session_summaries_au AFTER UPDATE ON session_summaries BEGIN
    INSERT INTO session_summaries_fts(session_summaries_fts, rowid, request, investigated, learned, completed, next_steps, notes)
    VALUES ('delete', old.id, old.request, old.investigated, old.learned, old.completed, old.next_steps, old.notes);
    INSERT INTO session_summaries_fts(rowid, request, investigated, learned, completed, next_steps, notes)
    VALUES (new.id, new.request, new.investigated, new.learned, new.completed, new.next_steps, new.notes);
END;

CREATE TRIGGER IF NOT EXISTS user_prompts_ai AFTER INSERT ON user_prompts BEGIN
    INSERT INTO user_prompts_fts(rowid, prompt_text) VALUES (new.id, new.prompt_text);
END;

CREATE TRIGGER IF NOT EXISTS user_prompts_ad AFTER DELETE ON user_prompts BEGIN
    INSERT INTO user_prompts_fts(user_prompts_fts, rowid, prompt_text)
    VALUES ('delete', old.id, old.prompt_text);
END;

CREATE TRIGGER IF NOT EXISTS user_prompts_au AFTER UPDATE ON user_prompts BEGIN
    INSERT INTO user_prompts_fts(user_prompts_fts, rowid, prompt_text)
    VALUES ('delete', old.id, old.prompt_text);
    INSERT INTO user_prompts_fts(rowid, prompt_text) VALUES (new.id, new.prompt_text);
END;
"""

_V5_RETRIEVAL_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_observations_concepts ON observations(concepts);
CREATE INDEX IF NOT EXISTS idx_observations_project_epoch ON observations(project, created_at_epoch DESC);
"""


def _v6_embedding_column(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "observations", "embedding", "BLOB")


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def _split_statements(script: str) -> list[str]:
    """Split a migration script on statement boundaries, keeping trigger bodies intact."""
    statements: list[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            if buffer.strip():
                statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


# Ordered, append-only. Every step must be safe to run twice.
MIGRATIONS: list[tuple[int, str, Any]] = [
    (1, "core tables", _V1_CORE_TABLES),
    (2, "secondary indexes", _V2_INDEXES),
    (3, "search index tables", _V3_SEARCH_INDEX),
    (4, "search index sync triggers", _V4_SYNC_TRIGGERS),
    (5, "retrieval indexes", _V5_RETRIEVAL_INDEXES),
    (6, "observation embeddings", _v6_embedding_column),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def _ensure_migrations_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def current_version(conn: sqlite3.Connection) -> int:
    _ensure_migrations_table(conn)
    row = conn.execute("SELECT MAX(version) AS version FROM schema_migrations").fetchone()
    if not row or row["version"] is None:
        return 0
    return int(row["version"])


def _run_step(conn: sqlite3.Connection, step: Any) -> None:
    if callable(step):
        step(conn)
        return
    for statement in _split_statements(step):
        conn.execute(statement)


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Apply every pending migration in ascending order and return the resulting version.

    Each migration and its version record commit together. A failing migration is
    rolled back and re-raised as RuntimeError; callers must not continue with the
    connection.
    """
    version = current_version(conn)
    for target, label, step in MIGRATIONS:
        if target <= version:
            continue
        try:
            conn.execute("BEGIN")
            _run_step(conn, step)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (target, dt.datetime.now(dt.UTC).isoformat()),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.exception(
                "schema migration failed",
                extra={"version": target, "migration": label},
                exc_info=exc,
            )
            raise RuntimeError(f"migration {target} ({label}) failed: {exc}") from exc
        version = target
    return version


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = []
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return []
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return []
