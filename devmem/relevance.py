from __future__ import annotations

import math
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .store.types import Observation

MS_PER_DAY = 86_400_000
DEFAULT_HALFLIFE_DAYS = 2.0

TYPE_SCORES = {
    "decision": 0.8,
    "bugfix": 0.7,
    "discovery": 0.6,
    "feature": 0.5,
    "refactor": 0.4,
    "change": 0.3,
}


@dataclass
class ScoringConfig:
    recency_halflife_days: float = DEFAULT_HALFLIFE_DAYS
    same_project_bonus: float = 0.1
    fts_weight: float = 1.0
    concept_weight: float = 0.5
    embedding_bonus: float = 0.15


@dataclass
class ScoringContext:
    current_project: str
    cwd_files: Sequence[str] = ()
    fts_ranks: dict[int, float] = field(default_factory=dict)
    concepts: Sequence[str] = ()
    config: ScoringConfig = field(default_factory=ScoringConfig)


def recency_score(epoch_ms: int, halflife_days: float, now_ms: int | None = None) -> float:
    """1.0 for now, 0.5 after one half-life. A non-positive half-life uses the default."""
    if not halflife_days > 0:
        halflife_days = DEFAULT_HALFLIFE_DAYS
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    age_days = (now - epoch_ms) / MS_PER_DAY
    return math.exp(-math.log(2) * age_days / halflife_days)


def type_score(kind: str) -> float:
    return TYPE_SCORES.get(kind, 0.3)


def concept_overlap(observation_concepts: Iterable[str], wanted: Iterable[str]) -> float:
    wanted_set = {c.lower() for c in wanted}
    have = [c.lower() for c in observation_concepts]
    if not wanted_set or not have:
        return 0.0
    return sum(1 for c in have if c in wanted_set) / len(have)


def file_overlap_score(observation_files: Sequence[str], cwd_files: Sequence[str]) -> float:
    if not observation_files or not cwd_files:
        return 0.0
    cwd_set = set(cwd_files)
    return sum(1 for path in observation_files if path in cwd_set) / len(observation_files)


def score_observation(
    observation: Observation, context: ScoringContext, now_ms: int | None = None
) -> float:
    cfg = context.config
    similarity = (
        context.fts_ranks.get(observation.id, 0.0) * cfg.fts_weight
        + concept_overlap(observation.concepts, context.concepts) * cfg.concept_weight
    )
    files = [*observation.files_read, *observation.files_modified]
    score = (
        recency_score(observation.created_at_epoch, cfg.recency_halflife_days, now_ms)
        + type_score(observation.type)
        + similarity
        + file_overlap_score(files, context.cwd_files)
    )
    if observation.project == context.current_project:
        score += cfg.same_project_bonus
    if observation.has_embedding:
        score += cfg.embedding_bonus
    return score


def rank_observations(
    candidates: Iterable[Observation],
    context: ScoringContext,
    limit: int,
    *,
    cross_project: bool = True,
    now_ms: int | None = None,
) -> list[Observation]:
    pool = [
        obs
        for obs in candidates
        if cross_project or obs.project == context.current_project
    ]
    scored = sorted(
        pool,
        key=lambda obs: score_observation(obs, context, now_ms),
        reverse=True,
    )
    return scored[:limit]
