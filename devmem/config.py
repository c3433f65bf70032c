from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/devmem/config.json").expanduser()
DEFAULT_SKIP_TOOLS = ["TodoRead", "TodoWrite", "LS"]


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("DEVMEM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


@dataclass
class DevmemConfig:
    db_path: str = "~/.devmem/memory.sqlite"
    worker_host: str = "127.0.0.1"
    worker_port: int = 3456
    observer_provider: str | None = None
    observer_model: str | None = None
    observer_api_key: str | None = None
    observer_max_chars: int = 12000
    observer_max_tokens: int = 4000
    recency_halflife_days: float = 2.0
    cross_project: bool = True
    dedup_window_ms: int = 3_600_000
    skip_tools: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_TOOLS))
    shutdown_timeout_s: float = 5.0
    log_level: str = "INFO"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: Path | None = None) -> DevmemConfig:
    """Defaults, then the config file, then the environment.

    A config file that is not a JSON object raises ValueError.
    """
    cfg = _apply_dict(DevmemConfig(), read_config_file(path))
    return _apply_env(cfg)


def _coerce(value: Any, current: Any) -> Any:
    """Convert a config file value to the type of the field it replaces."""
    if isinstance(current, bool):
        return value if isinstance(value, bool) else _parse_bool(str(value), current)
    if isinstance(current, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            return current
    if isinstance(current, float):
        return _parse_float(str(value), current)
    if isinstance(current, list):
        if isinstance(value, str):
            return _parse_list(value, current)
        if isinstance(value, list):
            return [str(item) for item in value]
        return current
    return value


def _apply_dict(cfg: DevmemConfig, data: dict[str, Any]) -> DevmemConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        setattr(cfg, key, _coerce(value, getattr(cfg, key)))
    return cfg


def _apply_env(cfg: DevmemConfig) -> DevmemConfig:
    cfg.db_path = os.getenv("DEVMEM_DB", cfg.db_path)
    cfg.worker_host = os.getenv("DEVMEM_WORKER_HOST", cfg.worker_host)
    cfg.worker_port = int(os.getenv("DEVMEM_PORT", cfg.worker_port))
    cfg.observer_provider = os.getenv("DEVMEM_OBSERVER_PROVIDER", cfg.observer_provider)
    cfg.observer_model = os.getenv("DEVMEM_OBSERVER_MODEL", cfg.observer_model)
    cfg.observer_api_key = os.getenv("DEVMEM_OBSERVER_API_KEY", cfg.observer_api_key)
    cfg.observer_max_chars = int(os.getenv("DEVMEM_OBSERVER_MAX_CHARS", cfg.observer_max_chars))
    cfg.observer_max_tokens = int(
        os.getenv("DEVMEM_OBSERVER_MAX_TOKENS", cfg.observer_max_tokens)
    )
    cfg.recency_halflife_days = _parse_float(
        os.getenv("DEVMEM_RECENCY_HALFLIFE_DAYS"), cfg.recency_halflife_days
    )
    cfg.cross_project = _parse_bool(os.getenv("DEVMEM_CROSS_PROJECT"), cfg.cross_project)
    cfg.dedup_window_ms = int(os.getenv("DEVMEM_DEDUP_WINDOW_MS", cfg.dedup_window_ms))
    cfg.skip_tools = _parse_list(os.getenv("DEVMEM_SKIP_TOOLS"), cfg.skip_tools)
    cfg.shutdown_timeout_s = _parse_float(
        os.getenv("DEVMEM_SHUTDOWN_TIMEOUT_S"), cfg.shutdown_timeout_s
    )
    cfg.log_level = os.getenv("DEVMEM_LOG_LEVEL", cfg.log_level)
    return cfg
