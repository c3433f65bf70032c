from __future__ import annotations

import datetime as dt
import sqlite3

from .. import db
from ..xml_parser import normalize_observation_type
from .types import Observation, Session, SessionSummary, UserPrompt

OBSERVATION_COLUMNS = """
    o.id, o.sdk_session_id, o.project, o.type, o.title, o.subtitle, o.narrative,
    o.facts, o.concepts, o.files_read, o.files_modified, o.prompt_number,
    o.discovery_tokens, o.created_at, o.created_at_epoch,
    (o.embedding IS NOT NULL) AS has_embedding
"""


def now_stamp() -> tuple[str, int]:
    now = dt.datetime.now(dt.UTC)
    return now.isoformat(), int(now.timestamp() * 1000)


def row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=int(row["id"]),
        claude_session_id=row["claude_session_id"],
        sdk_session_id=row["sdk_session_id"],
        project=row["project"],
        user_prompt=row["user_prompt"],
        started_at=row["started_at"],
        started_at_epoch=int(row["started_at_epoch"]),
        completed_at=row["completed_at"],
        completed_at_epoch=row["completed_at_epoch"],
        status=row["status"],
        prompt_counter=int(row["prompt_counter"]),
    )


def row_to_observation(row: sqlite3.Row) -> Observation:
    keys = row.keys()
    return Observation(
        id=int(row["id"]),
        sdk_session_id=row["sdk_session_id"],
        project=row["project"],
        type=normalize_observation_type(row["type"]),
        title=row["title"],
        subtitle=row["subtitle"],
        narrative=row["narrative"],
        facts=list(db.from_json(row["facts"])),
        concepts=list(db.from_json(row["concepts"])),
        files_read=list(db.from_json(row["files_read"])),
        files_modified=list(db.from_json(row["files_modified"])),
        prompt_number=row["prompt_number"],
        discovery_tokens=int(row["discovery_tokens"] or 0),
        created_at=row["created_at"],
        created_at_epoch=int(row["created_at_epoch"]),
        has_embedding=bool(row["has_embedding"]) if "has_embedding" in keys else False,
        fts_rank=float(row["fts_rank"] or 0.0) if "fts_rank" in keys else 0.0,
    )


def row_to_summary(row: sqlite3.Row) -> SessionSummary:
    keys = row.keys()
    return SessionSummary(
        id=int(row["id"]),
        sdk_session_id=row["sdk_session_id"],
        project=row["project"],
        request=row["request"],
        investigated=row["investigated"],
        learned=row["learned"],
        completed=row["completed"],
        next_steps=row["next_steps"],
        notes=row["notes"],
        prompt_number=row["prompt_number"],
        discovery_tokens=int(row["discovery_tokens"] or 0),
        created_at=row["created_at"],
        created_at_epoch=int(row["created_at_epoch"]),
        fts_rank=float(row["fts_rank"] or 0.0) if "fts_rank" in keys else 0.0,
    )


def row_to_prompt(row: sqlite3.Row) -> UserPrompt:
    keys = row.keys()
    return UserPrompt(
        id=int(row["id"]),
        claude_session_id=row["claude_session_id"],
        prompt_number=int(row["prompt_number"]),
        prompt_text=row["prompt_text"],
        created_at=row["created_at"],
        created_at_epoch=int(row["created_at_epoch"]),
        project=row["project"] if "project" in keys else None,
        fts_rank=float(row["fts_rank"] or 0.0) if "fts_rank" in keys else 0.0,
    )


