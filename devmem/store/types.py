from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

from ..errors import DevmemError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a store operation: either a value or the error that prevented it."""

    value: T | None = None
    error: DevmemError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: DevmemError) -> Outcome[T]:
        return cls(error=error)

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class Session:
    id: int
    claude_session_id: str
    sdk_session_id: str | None
    project: str
    user_prompt: str | None
    started_at: str
    started_at_epoch: int
    completed_at: str | None
    completed_at_epoch: int | None
    status: str
    prompt_counter: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Observation:
    id: int
    sdk_session_id: str
    project: str
    type: str
    title: str | None
    subtitle: str | None
    narrative: str | None
    facts: list[str]
    concepts: list[str]
    files_read: list[str]
    files_modified: list[str]
    prompt_number: int | None
    discovery_tokens: int
    created_at: str
    created_at_epoch: int
    has_embedding: bool = False
    fts_rank: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SessionSummary:
    id: int
    sdk_session_id: str
    project: str
    request: str | None
    investigated: str | None
    learned: str | None
    completed: str | None
    next_steps: str | None
    notes: str | None
    prompt_number: int | None
    discovery_tokens: int
    created_at: str
    created_at_epoch: int
    fts_rank: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UserPrompt:
    id: int
    claude_session_id: str
    prompt_number: int
    prompt_text: str
    created_at: str
    created_at_epoch: int
    project: str | None = None
    fts_rank: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CreatedSession:
    id: int
    is_new: bool


@dataclass
class StoreStats:
    sessions: int = 0
    observations: int = 0
    summaries: int = 0
    prompts: int = 0
    embedded: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
