from __future__ import annotations

import re
from dataclasses import dataclass, field
from xml.etree import ElementTree

from .db import OBSERVATION_TYPES

OBSERVATION_BLOCK_RE = re.compile(r"<observation>.*?</observation>", re.DOTALL)
SUMMARY_BLOCK_RE = re.compile(r"<summary>.*?</summary>", re.DOTALL)
CODE_FENCE_RE = re.compile(r"```(?:xml)?", re.IGNORECASE)
XML_DECL_RE = re.compile(r"<\?xml[^>]*\?>")


def normalize_observation_type(kind: str | None) -> str:
    """Unknown or missing types are stored as "change"."""
    value = (kind or "").strip().lower()
    return value if value in OBSERVATION_TYPES else "change"


@dataclass
class ParsedObservation:
    kind: str
    title: str
    narrative: str
    subtitle: str | None = None
    facts: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    files_read: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    discovery_tokens: int = 0


@dataclass
class ParsedSummary:
    request: str | None = None
    investigated: str | None = None
    learned: str | None = None
    completed: str | None = None
    next_steps: str | None = None
    notes: str | None = None
    discovery_tokens: int = 0

    def is_empty(self) -> bool:
        return not any(
            (
                self.request,
                self.investigated,
                self.learned,
                self.completed,
                self.next_steps,
                self.notes,
            )
        )


@dataclass
class ParsedOutput:
    observations: list[ParsedObservation]
    summary: ParsedSummary | None


def _clean_xml_text(text: str) -> str:
    cleaned = CODE_FENCE_RE.sub("", text)
    cleaned = XML_DECL_RE.sub("", cleaned)
    return cleaned.strip()


def _extract_blocks(pattern: re.Pattern[str], text: str) -> list[str]:
    return [block.strip() for block in pattern.findall(text)]


def _text(node: ElementTree.Element | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.strip()


def _child_texts(parent: ElementTree.Element | None, tag: str) -> list[str]:
    if parent is None:
        return []
    items = []
    for child in parent.findall(tag):
        value = _text(child)
        if value:
            items.append(value)
    return items


def _parse_observation_block(block: str) -> ParsedObservation | None:
    try:
        root = ElementTree.fromstring(block)
    except ElementTree.ParseError:
        return None
    kind = normalize_observation_type(_text(root.find("type")))
    # The type is its own dimension; do not repeat it as a concept.
    concepts = [c for c in _child_texts(root.find("concepts"), "concept") if c != kind]
    return ParsedObservation(
        kind=kind,
        title=_text(root.find("title")),
        narrative=_text(root.find("narrative")),
        subtitle=_text(root.find("subtitle")) or None,
        facts=_child_texts(root.find("facts"), "fact"),
        concepts=concepts,
        files_read=_child_texts(root.find("files_read"), "file"),
        files_modified=_child_texts(root.find("files_modified"), "file"),
    )


def _parse_summary_block(block: str) -> ParsedSummary | None:
    try:
        root = ElementTree.fromstring(block)
    except ElementTree.ParseError:
        return None
    return ParsedSummary(
        request=_text(root.find("request")) or None,
        investigated=_text(root.find("investigated")) or None,
        learned=_text(root.find("learned")) or None,
        completed=_text(root.find("completed")) or None,
        next_steps=_text(root.find("next_steps")) or None,
        notes=_text(root.find("notes")) or None,
    )


def parse_observer_output(text: str) -> ParsedOutput:
    cleaned = _clean_xml_text(text)
    observations: list[ParsedObservation] = []
    for block in _extract_blocks(OBSERVATION_BLOCK_RE, cleaned):
        parsed = _parse_observation_block(block)
        if parsed and (parsed.title or parsed.narrative):
            observations.append(parsed)
    summary: ParsedSummary | None = None
    summary_blocks = _extract_blocks(SUMMARY_BLOCK_RE, cleaned)
    if summary_blocks:
        summary = _parse_summary_block(summary_blocks[-1])
        if summary is not None and summary.is_empty():
            summary = None
    return ParsedOutput(observations=observations, summary=summary)
