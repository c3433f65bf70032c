from __future__ import annotations

import math
import re
from typing import Any

from .errors import ValidationError

MIN_LIMIT = 1
MAX_LIMIT = 100
DEFAULT_LIMIT = 10

MAX_PROJECT_LENGTH = 100
PROJECT_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
UNKNOWN_PROJECT = "unknown"

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def sanitize_limit(value: Any) -> int:
    """Clamp `value` to [1, 100]; anything unparseable becomes the default of 10."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_LIMIT
    if isinstance(value, str):
        match = _LEADING_INT_RE.match(value)
        if not match:
            return DEFAULT_LIMIT
        parsed = int(match.group(1))
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return DEFAULT_LIMIT
        parsed = math.floor(value)
    else:
        return DEFAULT_LIMIT
    return max(MIN_LIMIT, min(MAX_LIMIT, parsed))


def sanitize_project(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return UNKNOWN_PROJECT
    trimmed = value.strip()
    if len(trimmed) > MAX_PROJECT_LENGTH:
        return UNKNOWN_PROJECT
    if not PROJECT_PATTERN.match(trimmed):
        return UNKNOWN_PROJECT
    return trimmed


def project_from_cwd(cwd: Any) -> str:
    if not cwd or not isinstance(cwd, str):
        return UNKNOWN_PROJECT
    parts = re.split(r"[/\\]", cwd)
    return sanitize_project(parts[-1] if parts else "")


def parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a positive integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{name} must be a positive integer")
    if parsed <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return parsed


def require_text(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def escape_fts5_query(query: str) -> str:
    """Quote user text as a single FTS5 phrase so operators are matched literally."""
    if not query:
        return '""'
    return '"' + query.replace('"', '""') + '"'
