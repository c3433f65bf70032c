from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from ..config import DevmemConfig
from ..context_formatter import (
    format_context_full,
    format_context_index,
    format_empty_context,
    format_observation_full,
)
from ..errors import NotFoundError, ValidationError
from ..relevance import ScoringConfig, ScoringContext, rank_observations
from ..store import MemoryStore
from ..temporal import parse_since
from ..validation import parse_positive_int, sanitize_limit, sanitize_project

if TYPE_CHECKING:
    from ..worker import WorkerService

GET_PATHS = ("/context", "/observation_by_id")
CONTEXT_FORMATS = ("index", "full")


class _WorkerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def build_context(
    store: MemoryStore,
    cfg: DevmemConfig,
    project: str,
    limit: int = 10,
    context_format: str = "index",
    since: str | None = None,
) -> dict[str, Any]:
    """Rank recent observations for `project` and render them with its summaries."""
    since_epoch = parse_since(since)

    candidates = store.get_candidate_observations(limit * 3).unwrap() or []
    if since_epoch is not None:
        candidates = [obs for obs in candidates if obs.created_at_epoch >= since_epoch]
    scoring = ScoringContext(
        current_project=project,
        fts_ranks={obs.id: abs(obs.fts_rank) for obs in candidates if obs.fts_rank},
        config=ScoringConfig(recency_halflife_days=cfg.recency_halflife_days),
    )
    observations = rank_observations(
        candidates, scoring, limit, cross_project=cfg.cross_project
    )

    summaries = store.get_recent_summaries(project=project, limit=limit).unwrap() or []
    if since_epoch is not None:
        summaries = [s for s in summaries if s.created_at_epoch >= since_epoch]

    if not observations and not summaries:
        context = format_empty_context(project)
    elif context_format == "index":
        context = format_context_index(project, observations, summaries)
    else:
        context = format_context_full(project, observations, summaries)
    return {
        "context": context,
        "observationCount": len(observations),
        "summaryCount": len(summaries),
        "format": context_format,
    }


def handle_get(
    handler: _WorkerHandler, service: WorkerService, path: str, params: dict[str, str]
) -> bool:
    if path == "/context":
        raw_project = params.get("project")
        if not raw_project or not raw_project.strip():
            raise ValidationError("project is required")
        context_format = params.get("format") or "index"
        if context_format not in CONTEXT_FORMATS:
            raise ValidationError(f"Invalid format: {context_format}. Must be 'index' or 'full'")
        handler._send_json(
            build_context(
                service.store,
                service.config,
                sanitize_project(raw_project),
                limit=sanitize_limit(params.get("limit")),
                context_format=context_format,
                since=params.get("since"),
            )
        )
        return True

    if path == "/observation_by_id":
        observation_id = parse_positive_int(params.get("id"), "id")
        observation = service.store.get_observation_by_id(observation_id).unwrap()
        if observation is None:
            raise NotFoundError(f"Observation {observation_id} not found")
        handler._send_json(
            {
                "observation": observation.to_dict(),
                "formatted": format_observation_full(observation),
            }
        )
        return True

    return False
