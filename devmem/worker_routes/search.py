from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from ..errors import ValidationError
from ..temporal import parse_since
from ..validation import escape_fts5_query, sanitize_limit, sanitize_project

if TYPE_CHECKING:
    from ..worker import WorkerService

GET_PATHS = ("/search", "/timeline", "/decisions", "/find_by_file")
SEARCH_TYPES = ("observations", "summaries")


class _WorkerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def _optional_project(params: dict[str, str]) -> str | None:
    value = params.get("project")
    if value is None or not value.strip():
        return None
    return sanitize_project(value)


def _results(items: list[dict[str, Any]]) -> dict[str, Any]:
    return {"results": items, "count": len(items)}


def _search(service: WorkerService, params: dict[str, str]) -> dict[str, Any]:
    query = params.get("query")
    if not query or not query.strip():
        raise ValidationError("query is required")
    kind = params.get("type")
    if kind not in SEARCH_TYPES:
        raise ValidationError(f"Invalid type: {kind}. Must be 'observations' or 'summaries'")
    concept = params.get("concept") or None
    if concept and kind == "summaries":
        raise ValidationError("concept parameter is only supported for type=observations")

    fts_query = escape_fts5_query(query.strip())
    project = _optional_project(params)
    limit = sanitize_limit(params.get("limit"))
    store = service.store
    if kind == "observations":
        observations = store.search_observations(
            fts_query, project=project, concept=concept, limit=limit
        ).unwrap()
        return _results([obs.to_dict() for obs in observations or []])
    summaries = store.search_summaries(fts_query, project=project, limit=limit).unwrap()
    return _results([summary.to_dict() for summary in summaries or []])


def _timeline(service: WorkerService, params: dict[str, str]) -> dict[str, Any]:
    items = service.store.get_timeline(
        project=_optional_project(params),
        limit=sanitize_limit(params.get("limit")),
        since_epoch=parse_since(params.get("since")),
    ).unwrap()
    return _results(items or [])


def _decisions(service: WorkerService, params: dict[str, str]) -> dict[str, Any]:
    limit = sanitize_limit(params.get("limit"))
    since_epoch = parse_since(params.get("since"))
    recent = service.store.get_recent_observations(
        project=_optional_project(params), limit=limit * 5
    ).unwrap()
    decisions = [
        obs
        for obs in recent or []
        if obs.type == "decision" and (since_epoch is None or obs.created_at_epoch >= since_epoch)
    ]
    return _results([obs.to_dict() for obs in decisions[:limit]])


def _find_by_file(service: WorkerService, params: dict[str, str]) -> dict[str, Any]:
    path = params.get("file")
    if not path or not path.strip():
        raise ValidationError("file parameter is required")
    observations = service.store.get_observations_by_file(
        path.strip(), limit=sanitize_limit(params.get("limit"))
    ).unwrap()
    return _results([obs.to_dict() for obs in observations or []])


def handle_get(
    handler: _WorkerHandler, service: WorkerService, path: str, params: dict[str, str]
) -> bool:
    if path == "/search":
        handler._send_json(_search(service, params))
        return True
    if path == "/timeline":
        handler._send_json(_timeline(service, params))
        return True
    if path == "/decisions":
        handler._send_json(_decisions(service, params))
        return True
    if path == "/find_by_file":
        handler._send_json(_find_by_file(service, params))
        return True
    return False
