from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional
from xml.sax.saxutils import escape

from .db import OBSERVATION_TYPES

OBSERVATION_CONCEPTS = (
    "how-it-works, why-it-exists, what-changed, problem-solution, gotcha, "
    "pattern, trade-off"
)

SYSTEM_IDENTITY = (
    "You are a memory observer for a live coding session. "
    "Record what was learned, discovered, built, fixed or decided. "
    "Do not describe the observation process."
)

RECORDING_FOCUS = (
    "Record outcomes and insights, not just actions. Use past tense: discovered, "
    "fixed, implemented, learned. When debugging, record what was investigated, "
    "what was found and the conclusion."
)

SKIP_GUIDANCE = (
    "Skip trivial operations like empty listings, package installs with no issues "
    "or raw tool dumps. If nothing meaningful happened, output nothing."
)

OUTPUT_GUIDANCE = (
    "Output only XML. Emit at most one <observation> block. Do not include "
    "commentary outside XML."
)

SUMMARY_GUIDANCE = (
    "Summarize the session so far as a single <summary> block. Leave out any "
    "element you have nothing to say about."
)

OBSERVATION_SCHEMA = f"""
<observation>
  <type>[ {", ".join(OBSERVATION_TYPES)} ]</type>
  <title>[short outcome-focused title]</title>
  <subtitle>[one-sentence explanation]</subtitle>
  <facts>
    <fact>[concise factual statement]</fact>
  </facts>
  <narrative>[what changed, how it works, why it matters]</narrative>
  <concepts>
    <concept>[{OBSERVATION_CONCEPTS}]</concept>
  </concepts>
  <files_read>
    <file>[path]</file>
  </files_read>
  <files_modified>
    <file>[path]</file>
  </files_modified>
</observation>
""".strip()

SUMMARY_SCHEMA = """
<summary>
  <request>[user request summary]</request>
  <investigated>[what was examined]</investigated>
  <learned>[key learnings]</learned>
  <completed>[what was completed]</completed>
  <next_steps>[current trajectory]</next_steps>
  <notes>[extra context]</notes>
</summary>
""".strip()


@dataclass
class ToolEvent:
    tool_name: str
    tool_input: Any
    tool_output: Any
    cwd: Optional[str] = None


@dataclass
class ObserverContext:
    project: Optional[str]
    user_prompt: Optional[str]
    prompt_number: Optional[int]
    tool_events: list[ToolEvent] = field(default_factory=list)
    last_user_message: Optional[str] = None
    last_assistant_message: Optional[str] = None
    include_summary: bool = False


def _format_json(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return str(value)


def _format_tool_event(event: ToolEvent) -> str:
    parts = ["<observed_from_primary_session>"]
    parts.append(f"  <what_happened>{escape(event.tool_name)}</what_happened>")
    if event.cwd:
        parts.append(f"  <working_directory>{escape(event.cwd)}</working_directory>")
    params = escape(_format_json(event.tool_input))
    outcome = escape(_format_json(event.tool_output))
    if params:
        parts.append(f"  <parameters>{params}</parameters>")
    if outcome:
        parts.append(f"  <outcome>{outcome}</outcome>")
    parts.append("</observed_from_primary_session>")
    return "\n".join(parts)


def _format_request(context: ObserverContext) -> str | None:
    if not context.user_prompt:
        return None
    block = ["<observed_from_primary_session>"]
    block.append(f"  <user_request>{escape(context.user_prompt)}</user_request>")
    if context.prompt_number is not None:
        block.append(f"  <prompt_number>{context.prompt_number}</prompt_number>")
    if context.project:
        block.append(f"  <project>{escape(context.project)}</project>")
    block.append("</observed_from_primary_session>")
    return "\n".join(block)


def build_observer_prompt(context: ObserverContext) -> str:
    blocks: list[str] = [SYSTEM_IDENTITY]
    if context.include_summary:
        blocks.extend([SUMMARY_GUIDANCE, "Summary XML schema:", SUMMARY_SCHEMA])
    else:
        blocks.extend(
            [
                RECORDING_FOCUS,
                SKIP_GUIDANCE,
                OUTPUT_GUIDANCE,
                "Observation XML schema:",
                OBSERVATION_SCHEMA,
            ]
        )
    blocks.append("Observed session context:")
    request = _format_request(context)
    if request:
        blocks.append(request)
    for event in context.tool_events:
        blocks.append(_format_tool_event(event))
    if context.include_summary:
        exchange = ["<summary_context>"]
        if context.last_user_message:
            exchange.append(f"  <user_message>{escape(context.last_user_message)}</user_message>")
        if context.last_assistant_message:
            exchange.append(
                f"  <assistant_response>{escape(context.last_assistant_message)}</assistant_response>"
            )
        exchange.append("</summary_context>")
        blocks.append("\n".join(exchange))
    return "\n\n".join(blocks).strip()
