"""HTTP worker: routes hook requests into the store and the processing pipeline.

The worker writes to one database through two connections. Request handlers
run on the server thread and use `WorkerService.store`; the pipeline drain
thread uses `WorkerService.pipeline_store`. SQLite's file lock serialises the
two writers and every write commits as soon as it is made, so neither side
holds a transaction open across calls.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from . import __version__
from .config import DevmemConfig, load_config
from .errors import DevmemError
from .pipeline import InferenceCapability, MessageProcessor, MessageRouter
from .semantic import embed_text
from .store import MemoryStore
from .utils import ProjectNameCache
from .worker_http import query_params, read_json_body, send_error_response, send_json_response
from .worker_routes import context as worker_routes_context
from .worker_routes import ingest as worker_routes_ingest
from .worker_routes import search as worker_routes_search

logger = logging.getLogger(__name__)

GET_PATHS = frozenset(
    ("/health", *worker_routes_context.GET_PATHS, *worker_routes_search.GET_PATHS)
)
POST_PATHS = frozenset(worker_routes_ingest.POST_PATHS)


class WorkerService:
    """Everything one worker process owns: stores, the pipeline and the project cache.

    HTTP handlers use `store`; the drain thread uses a second connection to the
    same file so the two never share a sqlite connection.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        observer: InferenceCapability | None = None,
        config: DevmemConfig | None = None,
        project_cache: ProjectNameCache | None = None,
        embed: Callable[[str], bytes | None] = embed_text,
    ) -> None:
        self.config = config or load_config()
        self.db_path = Path(db_path or self.config.db_path).expanduser()
        self.project_cache = project_cache or ProjectNameCache()
        self.store = MemoryStore(self.db_path, check_same_thread=False)
        self.pipeline_store = MemoryStore(self.db_path, check_same_thread=False)
        if observer is None:
            from .observer import ObserverClient

            observer = ObserverClient(self.config)
        self.processor = MessageProcessor(
            self.pipeline_store, observer, config=self.config, embed=embed
        )
        self.router = MessageRouter(self.processor)
        self.started_at = time.monotonic()
        self._closed = False

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "uptimeSeconds": int(time.monotonic() - self.started_at),
            "pending": self.router.pending(),
            "draining": self.router.draining,
            "schemaVersion": self.store.schema_version,
        }

    def shutdown(self, timeout: float | None = None) -> int:
        """Wait for queued work, then close the stores. Returns messages dropped."""
        if self._closed:
            return 0
        self._closed = True
        wait = self.config.shutdown_timeout_s if timeout is None else timeout
        dropped = self.router.shutdown(wait)
        if not self.router.draining:
            self.pipeline_store.close()
        self.store.close()
        return dropped


class WorkerHTTPServer(HTTPServer):
    def __init__(self, address: tuple[str, int], service: WorkerService) -> None:
        super().__init__(address, WorkerHandler)
        self.service = service


class WorkerHandler(BaseHTTPRequestHandler):
    server: WorkerHTTPServer

    def _send_json(self, payload: dict, status: int = 200) -> None:
        send_json_response(self, payload, status=status)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("DEVMEM_WORKER_LOGS") == "1":
            super().log_message(format, *args)

    def _method_not_allowed(self, method: str, path: str) -> bool:
        other = POST_PATHS if method == "GET" else GET_PATHS
        if path in other:
            self._send_json({"error": f"Method {method} not allowed for {path}"}, status=405)
            return True
        return False

    def _dispatch(self, method: str, action: Callable[[], bool], path: str) -> None:
        try:
            if action():
                return
            if self._method_not_allowed(method, path):
                return
            self._send_json({"error": "Not found"}, status=404)
        except DevmemError as exc:
            send_error_response(self, exc)
        except Exception as exc:
            logger.exception(
                "worker request failed",
                extra={"method": method, "path": path},
                exc_info=exc,
            )
            self._send_json({"error": "internal server error"}, status=500)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        service = self.server.service

        def _route() -> bool:
            if parsed.path not in GET_PATHS:
                return False
            if parsed.path == "/health":
                self._send_json(service.health())
                return True
            params = query_params(parsed.query)
            if worker_routes_context.handle_get(self, service, parsed.path, params):
                return True
            return worker_routes_search.handle_get(self, service, parsed.path, params)

        self._dispatch("GET", _route, parsed.path)

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        service = self.server.service

        def _route() -> bool:
            if parsed.path not in POST_PATHS:
                return False
            payload = read_json_body(self)
            return worker_routes_ingest.handle_post(self, service, parsed.path, payload)

        self._dispatch("POST", _route, parsed.path)


def make_server(service: WorkerService, host: str, port: int) -> WorkerHTTPServer:
    return WorkerHTTPServer((host, port), service)


def serve_worker(
    host: str | None = None,
    port: int | None = None,
    *,
    config: DevmemConfig | None = None,
    service: WorkerService | None = None,
) -> None:
    cfg = config or load_config()
    service = service or WorkerService(config=cfg)
    server = make_server(service, host or cfg.worker_host, port or cfg.worker_port)
    bound_host, bound_port = server.server_address[:2]
    logger.info("devmem worker listening on %s:%s", bound_host, bound_port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("devmem worker interrupted")
    finally:
        server.server_close()
        dropped = service.shutdown(cfg.shutdown_timeout_s)
        logger.info("devmem worker stopped", extra={"dropped": dropped})


def start_worker_thread(service: WorkerService, host: str = "127.0.0.1", port: int = 0):
    """Serve in a daemon thread; returns (server, thread). Port 0 picks a free port."""
    server = make_server(service, host, port)
    thread = threading.Thread(target=server.serve_forever, name="devmem-worker", daemon=True)
    thread.start()
    return server, thread
