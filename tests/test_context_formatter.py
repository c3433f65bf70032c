from __future__ import annotations

from devmem.context_formatter import (
    OBSERVATION_ROW_TOKENS,
    SUMMARY_ROW_TOKENS,
    INDEX_HEADER_TOKENS,
    estimate_index_tokens,
    estimate_observation_tokens,
    estimate_tokens,
    format_budget_summary,
    format_context_full,
    format_context_index,
    format_empty_context,
    format_observation_full,
    format_summary_full,
    format_work_total,
    group_by_date,
    group_by_file,
    primary_file,
)
from devmem.store.types import Observation, SessionSummary
from devmem.temporal import MS_PER_DAY, start_of_day

TODAY = start_of_day()


def _obs(
    obs_id: int = 1,
    *,
    epoch: int = TODAY + 3_600_000,
    kind: str = "bugfix",
    title: str | None = "Fixed auth",
    narrative: str | None = None,
    files_read: list[str] | None = None,
    files_modified: list[str] | None = None,
    discovery_tokens: int = 0,
    **fields,
) -> Observation:
    return Observation(
        id=obs_id,
        sdk_session_id="claude-1",
        project="alpha",
        type=kind,
        title=title,
        subtitle=fields.get("subtitle"),
        narrative=narrative,
        facts=fields.get("facts", []),
        concepts=fields.get("concepts", []),
        files_read=files_read or [],
        files_modified=files_modified or [],
        prompt_number=1,
        discovery_tokens=discovery_tokens,
        created_at="",
        created_at_epoch=epoch,
    )


def _summary(summary_id: int = 1, *, epoch: int = TODAY + 3_600_000, **fields) -> SessionSummary:
    return SessionSummary(
        id=summary_id,
        sdk_session_id="claude-1",
        project="alpha",
        request=fields.get("request"),
        investigated=fields.get("investigated"),
        learned=fields.get("learned"),
        completed=fields.get("completed"),
        next_steps=fields.get("next_steps"),
        notes=fields.get("notes"),
        prompt_number=1,
        discovery_tokens=fields.get("discovery_tokens", 0),
        created_at="",
        created_at_epoch=epoch,
    )


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("a" * 12) == 3
    assert estimate_tokens("a" * 5) == 2
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0


def test_observation_tokens_sum_every_text_field() -> None:
    obs = _obs(title="a" * 4, narrative="b" * 5, facts=["c" * 8], files_read=["d" * 3])

    assert estimate_observation_tokens(obs) == 1 + 2 + 2 + 1


def test_index_tokens_are_fixed_per_row() -> None:
    assert estimate_index_tokens([_obs(1), _obs(2)], [_summary()]) == (
        2 * OBSERVATION_ROW_TOKENS + SUMMARY_ROW_TOKENS + INDEX_HEADER_TOKENS
    )


def test_group_by_date_buckets_and_drops_empty() -> None:
    observations = [
        _obs(1, epoch=TODAY + 1000),
        _obs(2, epoch=TODAY - MS_PER_DAY + 1000),
        _obs(3, epoch=TODAY - 30 * MS_PER_DAY),
    ]

    groups = group_by_date(observations, today=TODAY)

    assert [(g.label, [o.id for o in g.items]) for g in groups] == [
        ("Today", [1]),
        ("Yesterday", [2]),
        ("Older", [3]),
    ]


def test_primary_file_prefers_modified() -> None:
    assert primary_file(_obs(files_read=["r.py"], files_modified=["m.py"])) == "m.py"
    assert primary_file(_obs(files_read=["r.py"])) == "r.py"
    assert primary_file(_obs()) == "General"


def test_group_by_file_orders_by_count() -> None:
    observations = [
        _obs(1, files_read=["a.py"]),
        _obs(2, files_modified=["b.py"]),
        _obs(3, files_read=["b.py"]),
    ]

    groups = group_by_file(observations)

    assert [g.label for g in groups] == ["b.py", "a.py"]
    assert [o.id for o in groups[0].items] == [2, 3]


def test_budget_summary_handles_zero_work() -> None:
    text = format_budget_summary([_obs()], [])
    assert "(0% reduction from reuse)" in text


def test_work_total_units() -> None:
    assert format_work_total([_obs(discovery_tokens=999)], []) == "999 tokens"
    assert format_work_total([_obs(discovery_tokens=2500)], []) == "2k tokens"
    assert format_work_total([_obs(discovery_tokens=1_500_000)], []) == "1.5m tokens"


def test_index_rendering_lists_rows_under_date_and_file() -> None:
    observations = [
        _obs(7, title="Fixed auth", files_modified=["src/auth.py"], discovery_tokens=1200),
        _obs(8, title="Read config", kind="discovery"),
    ]
    summaries = [_summary(3, request="Fix login")]

    text = format_context_index("alpha", observations, summaries, today=TODAY)

    assert text.startswith("# [alpha] recent context")
    assert "### Today" in text
    assert "**src/auth.py**" in text
    assert "**General**" in text
    assert "| #7 |" in text and "Fixed auth" in text and "1,200" in text
    assert "| #S3 |" in text and "Fix login" in text
    assert "🔴" in text and "🔵" in text


def test_full_rendering_omits_empty_fields() -> None:
    observation = _obs(5, title="Fixed auth", narrative="Tokens rotate now.")
    summary = _summary(2, request="Fix login", completed="Done")

    text = format_context_full("alpha", [observation], [summary])

    assert "Tokens rotate now." in text
    assert "**Request:** Fix login" in text
    assert "**Completed:** Done" in text
    assert "Learned" not in text
    assert "Facts" not in text
    assert "Files Read" not in text


def test_single_observation_rendering() -> None:
    text = format_observation_full(
        _obs(9, subtitle="why", facts=["one"], concepts=["gotcha"], files_read=["a.py"])
    )

    assert text.startswith("## 🔴 Fixed auth")
    assert "**ID:** #9" in text
    assert "*why*" in text
    assert "- one" in text
    assert "**Concepts:** gotcha" in text
    assert "**Files Read:** a.py" in text
    assert "Files Modified" not in text


def test_summary_rendering_skips_missing_fields() -> None:
    text = format_summary_full(_summary(4, learned="LRU"))
    assert "**Learned:** LRU" in text
    assert "Request" not in text


def test_empty_context_message() -> None:
    assert format_empty_context("alpha") == (
        "# alpha recent context\n\nNo previous sessions found for this project yet."
    )
