from __future__ import annotations

from pathlib import Path

import pytest

from devmem.store import MemoryStore
from devmem.xml_parser import ParsedObservation, ParsedSummary


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DEVMEM_EMBEDDING_DISABLED", "1")
    monkeypatch.setenv("DEVMEM_CONFIG", str(tmp_path / "config" / "config.json"))
    for name in ("DEVMEM_DB", "DEVMEM_PROJECT", "DEVMEM_SKIP_TOOLS", "DEVMEM_CROSS_PROJECT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path):
    mem = MemoryStore(tmp_path / "mem.sqlite")
    try:
        yield mem
    finally:
        mem.close()


def make_observation(
    title: str = "Fixed auth token refresh",
    narrative: str = "Refresh tokens now rotate on every use.",
    kind: str = "bugfix",
    **fields,
) -> ParsedObservation:
    return ParsedObservation(kind=kind, title=title, narrative=narrative, **fields)


def make_summary(**fields) -> ParsedSummary:
    defaults = {"request": "Fix login", "completed": "Token refresh fixed"}
    defaults.update(fields)
    return ParsedSummary(**defaults)
