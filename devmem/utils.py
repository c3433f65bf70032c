from __future__ import annotations

import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path

from .validation import UNKNOWN_PROJECT, project_from_cwd, sanitize_project


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.STDOUT, text=True)
        return out.strip()
    except subprocess.CalledProcessError as exc:
        return exc.output.strip()
    except (FileNotFoundError, NotADirectoryError):
        return ""


def _resolve_worktree_parent(cwd: str) -> str | None:
    """If cwd is a git worktree, return the main repo root. Otherwise return None."""
    try:
        common_dir = subprocess.check_output(
            ["git", "rev-parse", "--git-common-dir"],
            cwd=cwd,
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
        git_dir = subprocess.check_output(
            ["git", "rev-parse", "--git-dir"],
            cwd=cwd,
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
    except (subprocess.CalledProcessError, FileNotFoundError, OSError):
        return None
    common_path = (Path(cwd) / common_dir).resolve()
    git_path = (Path(cwd) / git_dir).resolve()
    if common_path == git_path:
        return None
    if common_path.name == ".git":
        return str(common_path.parent)
    return str(common_path)


class ProjectNameCache:
    """Working directory to project name, kept for the life of the owning process."""

    def __init__(self) -> None:
        self._names: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, cwd: str) -> str | None:
        with self._lock:
            return self._names.get(cwd)

    def set(self, cwd: str, name: str) -> None:
        with self._lock:
            self._names[cwd] = name

    def clear(self) -> None:
        with self._lock:
            self._names.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)


def git_project_name(cwd: str) -> str | None:
    repo_root = run_command(["git", "rev-parse", "--show-toplevel"], cwd=cwd)
    if not repo_root or repo_root.startswith("fatal:") or not Path(repo_root).is_dir():
        return None
    main_repo = _resolve_worktree_parent(cwd)
    if main_repo:
        repo_root = main_repo
    return Path(repo_root).name


def resolve_project(cwd: str | None, cache: ProjectNameCache | None = None) -> str:
    """Name the project a working directory belongs to.

    Inside a git checkout this is the repository directory name (the main
    repository for worktrees); elsewhere it is the last path component. The
    result is always a valid project name or "unknown".
    """
    if not cwd or not isinstance(cwd, str):
        return UNKNOWN_PROJECT
    if cache is not None:
        cached = cache.get(cwd)
        if cached is not None:
            return cached
    name: str | None = None
    if Path(cwd).is_dir():
        name = git_project_name(cwd)
    project = sanitize_project(name) if name else project_from_cwd(cwd.rstrip("/\\"))
    if cache is not None:
        cache.set(cwd, project)
    return project
