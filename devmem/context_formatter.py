"""Render stored records as context for a new session.

The index rendering is the cheap first tier: one row per record with the tokens
it costs to read and the tokens its original work cost. The full rendering is the
second tier and prints every non-empty field.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from .store.types import Observation, SessionSummary
from .temporal import (
    MS_PER_DAY,
    format_date,
    format_date_time,
    format_time,
    relative_label,
    start_of_day,
)

TYPE_ICONS = {
    "decision": "⚖️",
    "bugfix": "🔴",
    "feature": "🟣",
    "refactor": "🔄",
    "discovery": "🔵",
    "change": "✅",
    "session": "🎯",
}

WORK_ICONS = {
    "research": "🔍",
    "building": "🛠️",
    "deciding": "⚖️",
}

DEFAULT_ICON = "📝"
OBSERVATION_ROW_TOKENS = 20
SUMMARY_ROW_TOKENS = 15
INDEX_HEADER_TOKENS = 150

DATE_BUCKETS = ("Today", "Yesterday", "This Week", "Older")

TABLE_HEADER = "| ID | Time | T | Title | Read | Work |\n|----|------|---|-------|------|------|"

LEGEND = (
    "**Legend:** 🎯 session | 🔴 bugfix | 🟣 feature | 🔄 refactor | ✅ change "
    "| 🔵 discovery | ⚖️ decision"
)


@dataclass
class Group:
    label: str
    items: list


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def estimate_observation_tokens(obs: Observation) -> int:
    return (
        estimate_tokens(obs.title)
        + estimate_tokens(obs.subtitle)
        + estimate_tokens(obs.narrative)
        + estimate_tokens(" ".join(obs.facts))
        + estimate_tokens(" ".join(obs.concepts))
        + estimate_tokens(" ".join(obs.files_read))
        + estimate_tokens(" ".join(obs.files_modified))
    )


def estimate_summary_tokens(summary: SessionSummary) -> int:
    return sum(
        estimate_tokens(value)
        for value in (
            summary.request,
            summary.investigated,
            summary.learned,
            summary.completed,
            summary.next_steps,
            summary.notes,
        )
    )


def estimate_index_tokens(
    observations: Sequence[Observation], summaries: Sequence[SessionSummary]
) -> int:
    return (
        len(observations) * OBSERVATION_ROW_TOKENS
        + len(summaries) * SUMMARY_ROW_TOKENS
        + INDEX_HEADER_TOKENS
    )


def _total_work(
    observations: Sequence[Observation], summaries: Sequence[SessionSummary]
) -> int:
    return sum(o.discovery_tokens or 0 for o in observations) + sum(
        s.discovery_tokens or 0 for s in summaries
    )


def group_by_date(observations: Sequence[Observation], today: int | None = None) -> list[Group]:
    """Bucket into Today / Yesterday / This Week / Older, dropping empty buckets."""
    start = today if today is not None else start_of_day()
    buckets: dict[str, list[Observation]] = {label: [] for label in DATE_BUCKETS}
    for obs in observations:
        buckets[relative_label(obs.created_at_epoch, start)].append(obs)
    return [Group(label, items) for label, items in buckets.items() if items]


def primary_file(obs: Observation) -> str:
    if obs.files_modified:
        return obs.files_modified[0]
    if obs.files_read:
        return obs.files_read[0]
    return "General"


def group_by_file(observations: Sequence[Observation]) -> list[Group]:
    """Group by primary file, busiest file first (ties keep first-seen order)."""
    groups: dict[str, list[Observation]] = {}
    for obs in observations:
        groups.setdefault(primary_file(obs), []).append(obs)
    ordered = sorted(groups.items(), key=lambda entry: len(entry[1]), reverse=True)
    return [Group(path, items) for path, items in ordered]


def group_summaries_by_date(
    summaries: Sequence[SessionSummary], today: int | None = None
) -> list[Group]:
    start = today if today is not None else start_of_day()
    groups: dict[str, list[SessionSummary]] = {}
    for summary in summaries:
        epoch = summary.created_at_epoch
        if start - MS_PER_DAY <= epoch < start:
            label = "Yesterday"
        else:
            label = format_date(epoch)
        groups.setdefault(label, []).append(summary)
    return [Group(label, items) for label, items in groups.items()]


def _work_icon(kind: str) -> str:
    if kind == "discovery":
        return WORK_ICONS["research"]
    if kind == "decision":
        return WORK_ICONS["deciding"]
    return WORK_ICONS["building"]


def format_observation_index_row(obs: Observation) -> str:
    icon = TYPE_ICONS.get(obs.type, DEFAULT_ICON)
    title = obs.title or "Untitled"
    read_tokens = estimate_observation_tokens(obs)
    work_tokens = obs.discovery_tokens or 0
    return (
        f"| #{obs.id} | {format_time(obs.created_at_epoch)} | {icon} | {title} "
        f"| ~{read_tokens} | {_work_icon(obs.type)} {work_tokens:,} |"
    )


def format_summary_index_row(summary: SessionSummary) -> str:
    title = summary.request or "Session summary"
    read_tokens = estimate_summary_tokens(summary)
    work_tokens = summary.discovery_tokens or 0
    return (
        f"| #S{summary.id} | {format_time(summary.created_at_epoch)} | {TYPE_ICONS['session']} "
        f"| {title} | ~{read_tokens} | {WORK_ICONS['research']} {work_tokens:,} |"
    )


def format_budget_summary(
    observations: Sequence[Observation], summaries: Sequence[SessionSummary]
) -> str:
    index_tokens = estimate_index_tokens(observations, summaries)
    total_work = _total_work(observations, summaries)
    savings = total_work - index_tokens
    percent = round(savings / total_work * 100) if total_work > 0 else 0
    return "\n".join(
        [
            "📊 **Context Economics**:",
            f"- Loading: {len(observations)} observations ({index_tokens:,} tokens to read)",
            f"- Work investment: {total_work:,} tokens spent on research, building, and decisions",
            f"- Your savings: {savings:,} tokens ({percent}% reduction from reuse)",
        ]
    )


def format_work_total(
    observations: Sequence[Observation], summaries: Sequence[SessionSummary]
) -> str:
    total = _total_work(observations, summaries)
    if total >= 1_000_000:
        return f"{total / 1_000_000:.1f}m tokens"
    if total >= 1000:
        return f"{round(total / 1000)}k tokens"
    return f"{total} tokens"


def format_context_index(
    project: str,
    observations: Sequence[Observation],
    summaries: Sequence[SessionSummary],
    today: int | None = None,
) -> str:
    parts: list[str] = [f"# [{project}] recent context\n", LEGEND, ""]
    parts.extend(
        [
            "💡 **Column Key**:",
            "- **Read**: Tokens to read this observation (cost to learn it now)",
            "- **Work**: Tokens spent on work that produced this record "
            "(🔍 research, 🛠️ building, ⚖️ deciding)",
            "",
            "💡 **Context Index:** This semantic index (titles, types, files, tokens) "
            "is usually sufficient to understand past work.",
            "",
            "When you need implementation details, rationale, or debugging context:",
            "- Fetch full observations on demand by ID",
            "- Critical types (🔴 bugfix, ⚖️ decision) often need detailed fetching",
            "- Trust this index over re-reading code for past decisions and learnings",
            "",
            format_budget_summary(observations, summaries),
            "",
        ]
    )

    for group in group_summaries_by_date(summaries, today):
        parts.append(f"### {group.label}\n")
        parts.extend(format_summary_index_row(summary) for summary in group.items)
        parts.append("")

    for date_group in group_by_date(observations, today):
        parts.append(f"### {date_group.label}\n")
        for file_group in group_by_file(date_group.items):
            parts.append(f"**{file_group.label}**")
            parts.append(TABLE_HEADER)
            parts.extend(format_observation_index_row(obs) for obs in file_group.items)
            parts.append("")

    index_tokens = estimate_index_tokens(observations, summaries)
    parts.append(
        f"💰 Access {format_work_total(observations, summaries)} of past research & decisions "
        f"for just {index_tokens:,}t. Fetch memories by ID instead of re-reading files."
    )
    return "\n".join(parts)


def format_observation_full(obs: Observation) -> str:
    icon = TYPE_ICONS.get(obs.type, DEFAULT_ICON)
    parts = [
        f"## {icon} {obs.title or 'Untitled'}",
        f"**Type:** {obs.type} | **ID:** #{obs.id} | **Project:** {obs.project}",
        f"**Created:** {format_date_time(obs.created_at_epoch)}",
        "",
    ]
    if obs.subtitle:
        parts.extend([f"*{obs.subtitle}*", ""])
    if obs.narrative:
        parts.extend([obs.narrative, ""])
    if obs.facts:
        parts.append("**Facts:**")
        parts.extend(f"- {fact}" for fact in obs.facts)
        parts.append("")
    if obs.concepts:
        parts.extend([f"**Concepts:** {', '.join(obs.concepts)}", ""])
    if obs.files_read:
        parts.append(f"**Files Read:** {', '.join(obs.files_read)}")
    if obs.files_modified:
        parts.append(f"**Files Modified:** {', '.join(obs.files_modified)}")
    return "\n".join(parts).rstrip()


SUMMARY_FIELDS = (
    ("request", "Request"),
    ("investigated", "Investigated"),
    ("learned", "Learned"),
    ("completed", "Completed"),
    ("next_steps", "Next Steps"),
    ("notes", "Notes"),
)


def format_summary_full(summary: SessionSummary) -> str:
    parts = [f"### 🎯 Session #S{summary.id} ({format_date_time(summary.created_at_epoch)})"]
    for attr, label in SUMMARY_FIELDS:
        value = getattr(summary, attr)
        if value:
            parts.append(f"**{label}:** {value}")
    return "\n".join(parts)


def format_context_full(
    project: str,
    observations: Sequence[Observation],
    summaries: Sequence[SessionSummary],
) -> str:
    parts = [f"# {project} recent context"]
    if summaries:
        parts.append("\n## Recent Session Summaries\n")
        parts.append("\n\n".join(format_summary_full(summary) for summary in summaries))
    if observations:
        parts.append("\n## Recent Observations\n")
        parts.append("\n\n".join(format_observation_full(obs) for obs in observations))
    return "\n".join(parts)


def format_empty_context(project: str) -> str:
    return f"# {project} recent context\n\nNo previous sessions found for this project yet."
