from __future__ import annotations

from ._store import MemoryStore
from .types import (
    CreatedSession,
    Observation,
    Outcome,
    Session,
    SessionSummary,
    StoreStats,
    UserPrompt,
)

__all__ = [
    "CreatedSession",
    "MemoryStore",
    "Observation",
    "Outcome",
    "Session",
    "SessionSummary",
    "StoreStats",
    "UserPrompt",
]
