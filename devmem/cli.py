from __future__ import annotations

import json
import logging
import os
from typing import Optional

import typer
from rich import print

from .client import WorkerClient, WorkerUnavailable
from .config import DevmemConfig, load_config
from .context_formatter import format_observation_full
from .errors import DevmemError
from .store import MemoryStore
from .store import vectors as store_vectors
from .utils import ProjectNameCache, resolve_project
from .validation import escape_fts5_query, sanitize_limit, sanitize_project
from .worker import serve_worker
from .worker_routes.context import build_context

app = typer.Typer(help="devmem: persistent memory for coding assistant sessions")


def _config_or_exit() -> DevmemConfig:
    try:
        return load_config()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _store(db_path: str | None, cfg: DevmemConfig) -> MemoryStore:
    return MemoryStore(db_path or cfg.db_path)


def _resolve_project(project: str | None, all_projects: bool = False) -> str | None:
    if all_projects:
        return None
    if project:
        return sanitize_project(project)
    env_project = os.environ.get("DEVMEM_PROJECT")
    if env_project:
        return sanitize_project(env_project)
    return resolve_project(os.getcwd(), ProjectNameCache())


@app.command()
def serve(
    host: str = typer.Option(None, help="Interface to bind (default from config)"),
    port: int = typer.Option(None, help="Port to bind (default from config)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Run the worker HTTP service in the foreground."""
    cfg = _config_or_exit()
    if db_path:
        cfg.db_path = db_path
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    serve_worker(host, port, config=cfg)


@app.command()
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    cfg = _config_or_exit()
    store = _store(db_path, cfg)
    print(f"Initialized database at {store.db_path} (schema v{store.schema_version})")
    store.close()


@app.command()
def search(
    query: str,
    limit: int = typer.Option(5),
    summaries: bool = typer.Option(False, help="Search session summaries instead"),
    concept: Optional[str] = typer.Option(None, help="Only observations tagged with concept"),
    db_path: str = typer.Option(None),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo name)"),
    all_projects: bool = typer.Option(False, help="Search across all projects"),
) -> None:
    cfg = _config_or_exit()
    store = _store(db_path, cfg)
    resolved_project = _resolve_project(project, all_projects=all_projects)
    fts_query = escape_fts5_query(query)
    try:
        if summaries:
            for summary in store.search_summaries(
                fts_query, project=resolved_project, limit=sanitize_limit(limit)
            ).unwrap() or []:
                typer.echo(
                    f"[S{summary.id}] {summary.request or 'Session summary'}\n"
                    f"{summary.completed or ''}\n"
                )
            return
        for obs in store.search_observations(
            fts_query, project=resolved_project, concept=concept, limit=sanitize_limit(limit)
        ).unwrap() or []:
            typer.echo(f"[{obs.id}] ({obs.type}) {obs.title}\n{obs.narrative or ''}\n")
    except DevmemError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()


@app.command()
def context(
    limit: int = typer.Option(10),
    full: bool = typer.Option(False, help="Render every field instead of the index"),
    since: Optional[str] = typer.Option(None, help="today, yesterday, 3d, 2w or a date"),
    db_path: str = typer.Option(None),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo name)"),
) -> None:
    """Print the context block a new session would receive."""
    cfg = _config_or_exit()
    store = _store(db_path, cfg)
    resolved_project = _resolve_project(project) or "unknown"
    try:
        payload = build_context(
            store,
            cfg,
            resolved_project,
            limit=sanitize_limit(limit),
            context_format="full" if full else "index",
            since=since,
        )
    except DevmemError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    typer.echo(payload["context"])


@app.command()
def show(
    observation_id: int,
    as_json: bool = typer.Option(False, "--json", help="Print the raw record"),
    db_path: str = typer.Option(None),
) -> None:
    cfg = _config_or_exit()
    store = _store(db_path, cfg)
    try:
        observation = store.get_observation_by_id(observation_id).unwrap()
    finally:
        store.close()
    if observation is None:
        print(f"[red]Observation {observation_id} not found[/red]")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(observation.to_dict(), indent=2, ensure_ascii=False))
        return
    typer.echo(format_observation_full(observation))


@app.command()
def backfill_embeddings(
    limit: Optional[int] = typer.Option(None, help="Max observations to embed"),
    project: str = typer.Option(None, help="Only this project"),
    dry_run: bool = typer.Option(False, help="Report without writing"),
    db_path: str = typer.Option(None),
) -> None:
    """Store vectors for observations recorded while embeddings were unavailable."""
    cfg = _config_or_exit()
    store = _store(db_path, cfg)
    try:
        result = store_vectors.backfill_embeddings(
            store,
            limit=limit,
            project=sanitize_project(project) if project else None,
            dry_run=dry_run,
        )
    finally:
        store.close()
    action = "Would embed" if dry_run else "Embedded"
    print(
        f"Checked {result['checked']} observations. "
        f"{action} {result['embedded']}, skipped {result['skipped']}."
    )


@app.command()
def status() -> None:
    """Query a running worker's health."""
    cfg = _config_or_exit()
    try:
        with WorkerClient(config=cfg) as client:
            health = client.health()
    except WorkerUnavailable as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"[green]Worker {health.get('status')}[/green] v{health.get('version')}")
    print(f"- uptime: {health.get('uptimeSeconds')}s")
    print(f"- pending: {health.get('pending')} (draining: {health.get('draining')})")
    print(f"- schema: v{health.get('schemaVersion')}")


if __name__ == "__main__":
    app()
