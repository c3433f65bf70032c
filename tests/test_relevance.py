from __future__ import annotations

import math

import pytest

from devmem.relevance import (
    MS_PER_DAY,
    ScoringConfig,
    ScoringContext,
    concept_overlap,
    file_overlap_score,
    rank_observations,
    recency_score,
    score_observation,
    type_score,
)
from devmem.store.types import Observation

NOW = 1_760_000_000_000


def _obs(obs_id: int, *, project: str = "alpha", kind: str = "change", age_days: float = 0, **fields):
    return Observation(
        id=obs_id,
        sdk_session_id="claude-1",
        project=project,
        type=kind,
        title=f"obs {obs_id}",
        subtitle=None,
        narrative=None,
        facts=[],
        concepts=fields.get("concepts", []),
        files_read=fields.get("files_read", []),
        files_modified=[],
        prompt_number=1,
        discovery_tokens=0,
        created_at="",
        created_at_epoch=int(NOW - age_days * MS_PER_DAY),
        has_embedding=fields.get("has_embedding", False),
    )


def test_recency_halves_each_halflife() -> None:
    assert recency_score(NOW, 2.0, NOW) == pytest.approx(1.0)
    assert recency_score(NOW - 2 * MS_PER_DAY, 2.0, NOW) == pytest.approx(0.5)
    assert recency_score(NOW - 4 * MS_PER_DAY, 2.0, NOW) == pytest.approx(0.25)


@pytest.mark.parametrize("halflife", [0, 0.0, -1.0, math.nan])
def test_recency_with_unusable_halflife_uses_default(halflife: float) -> None:
    assert recency_score(NOW - 2 * MS_PER_DAY, halflife, NOW) == pytest.approx(0.5)


def test_type_scores() -> None:
    assert type_score("decision") > type_score("bugfix") > type_score("change")
    assert type_score("unheard-of") == type_score("change")


def test_overlap_helpers() -> None:
    assert concept_overlap(["Gotcha", "pattern"], ["gotcha"]) == 0.5
    assert concept_overlap([], ["gotcha"]) == 0.0
    assert file_overlap_score(["a.py", "b.py"], ["a.py"]) == 0.5
    assert file_overlap_score([], ["a.py"]) == 0.0


def test_score_components_add_up() -> None:
    context = ScoringContext(
        current_project="alpha",
        fts_ranks={1: 2.0},
        config=ScoringConfig(recency_halflife_days=1.0),
    )
    obs = _obs(1, kind="decision", age_days=1, has_embedding=True)

    expected = 0.5 + 0.8 + 2.0 + 0.1 + 0.15
    assert math.isclose(score_observation(obs, context, NOW), expected)


def test_rank_orders_by_score_and_truncates() -> None:
    context = ScoringContext(current_project="alpha")
    candidates = [
        _obs(1, age_days=10),
        _obs(2, kind="decision"),
        _obs(3),
    ]

    ranked = rank_observations(candidates, context, limit=2, now_ms=NOW)

    assert [obs.id for obs in ranked] == [2, 3]


def test_rank_can_exclude_other_projects() -> None:
    context = ScoringContext(current_project="alpha")
    candidates = [_obs(1, project="beta", kind="decision"), _obs(2)]

    assert [o.id for o in rank_observations(candidates, context, 5, now_ms=NOW)] == [1, 2]
    assert [
        o.id for o in rank_observations(candidates, context, 5, cross_project=False, now_ms=NOW)
    ] == [2]
