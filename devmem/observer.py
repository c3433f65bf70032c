from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from .config import DevmemConfig, load_config
from .context_formatter import estimate_tokens
from .observer_prompts import ObserverContext, build_observer_prompt
from .xml_parser import ParsedObservation, ParsedOutput, ParsedSummary, parse_observer_output

DEFAULT_OPENAI_MODEL = "gpt-5.1-codex-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5"

WRITE_TOOLS = {"Edit", "Write", "MultiEdit", "NotebookEdit"}

logger = logging.getLogger(__name__)


def _resolve_provider(configured: str | None, model: str) -> str:
    if configured and configured.lower() in {"openai", "anthropic"}:
        return configured.lower()
    if model.lower().startswith("claude"):
        return "anthropic"
    return "openai"


def extract_file_paths(tool_name: str, tool_input: Any) -> tuple[list[str], list[str]]:
    """Return (files_read, files_modified) named by a tool's `file_path`/`path` input."""
    if not isinstance(tool_input, dict):
        return [], []
    path = tool_input.get("file_path")
    if not isinstance(path, str):
        path = tool_input.get("path")
    if not isinstance(path, str) or not path:
        return [], []
    if tool_name in WRITE_TOOLS:
        return [], [path]
    return [path], []


@dataclass
class ObserverResponse:
    raw: str | None
    parsed: ParsedOutput


class ObserverClient:
    """LLM-backed inference capability.

    `observe_tool` and `summarize` return None when the provider is unavailable,
    the call fails, or the model chose to record nothing.
    """

    def __init__(self, config: DevmemConfig | None = None) -> None:
        cfg = config or load_config()
        model = cfg.observer_model or ""
        provider = _resolve_provider(cfg.observer_provider, model or DEFAULT_OPENAI_MODEL)
        self.provider = provider
        self.model = model or (
            DEFAULT_ANTHROPIC_MODEL if provider == "anthropic" else DEFAULT_OPENAI_MODEL
        )
        self.api_key = cfg.observer_api_key
        self.max_chars = cfg.observer_max_chars
        self.max_tokens = cfg.observer_max_tokens
        self.client: object | None = None
        if provider == "anthropic":
            if not self.api_key:
                self.api_key = os.getenv("ANTHROPIC_API_KEY")
            if not self.api_key:
                logger.warning("observer auth: missing anthropic api key")
                return
            try:
                import anthropic  # type: ignore

                self.client = anthropic.Anthropic(api_key=self.api_key)
            except Exception as exc:  # pragma: no cover
                logger.exception("observer auth: anthropic client init failed", exc_info=exc)
                self.client = None
        else:
            if not self.api_key:
                self.api_key = os.getenv("OPENAI_API_KEY")
            if not self.api_key:
                logger.warning("observer auth: missing openai api key")
                return
            try:
                from openai import OpenAI  # type: ignore

                self.client = OpenAI(api_key=self.api_key)
            except Exception as exc:  # pragma: no cover
                logger.exception("observer auth: openai client init failed", exc_info=exc)
                self.client = None

    @property
    def available(self) -> bool:
        return self.client is not None

    def observe(self, context: ObserverContext) -> ObserverResponse:
        prompt = build_observer_prompt(context)
        if self.max_chars > 0 and len(prompt) > self.max_chars:
            prompt = prompt[: self.max_chars]
        raw = self._call(prompt)
        parsed = parse_observer_output(raw or "")
        cost = estimate_tokens(prompt) + estimate_tokens(raw)
        for observation in parsed.observations:
            observation.discovery_tokens = cost
        if parsed.summary is not None:
            parsed.summary.discovery_tokens = cost
        return ObserverResponse(raw=raw, parsed=parsed)

    def observe_tool(self, context: ObserverContext) -> ParsedObservation | None:
        response = self.observe(context)
        if not response.parsed.observations:
            return None
        observation = response.parsed.observations[0]
        if not observation.files_read and not observation.files_modified:
            for event in context.tool_events:
                files_read, files_modified = extract_file_paths(event.tool_name, event.tool_input)
                observation.files_read.extend(files_read)
                observation.files_modified.extend(files_modified)
        return observation

    def summarize(self, context: ObserverContext) -> ParsedSummary | None:
        context.include_summary = True
        return self.observe(context).parsed.summary

    def _call(self, prompt: str) -> str | None:
        if not self.client:
            logger.warning("observer auth: missing client")
            return None
        try:
            if self.provider == "anthropic":
                resp = self.client.messages.create(  # type: ignore[union-attr]
                    model=self.model,
                    system="You are a memory observer.",
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0,
                    max_tokens=self.max_tokens,
                )
                return "".join(
                    block.text for block in resp.content if getattr(block, "type", "") == "text"
                )
            resp = self.client.chat.completions.create(  # type: ignore[union-attr]
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are a memory observer."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0,
                max_tokens=self.max_tokens,
            )
            return resp.choices[0].message.content
        except Exception as exc:  # pragma: no cover
            logger.exception(
                "observer call failed",
                extra={"provider": self.provider, "model": self.model},
                exc_info=exc,
            )
            return None
