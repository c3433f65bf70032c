from __future__ import annotations

import re
from typing import Any

PRIVATE_OPEN = "<private>"
PRIVATE_CLOSE = "</private>"

CONTEXT_TAG_RE = re.compile(r"<devmem-context>.*?</devmem-context>", re.DOTALL)
SYSTEM_REMINDER_RE = re.compile(r"<system-reminder>.*?</system-reminder>", re.DOTALL)


def strip_private_tags(content: str) -> str:
    """Drop everything inside <private> regions, honouring nesting.

    An unmatched closing tag is discarded; an unmatched opening tag hides the rest
    of the text.
    """
    result: list[str] = []
    depth = 0
    i = 0
    while i < len(content):
        if content.startswith(PRIVATE_OPEN, i):
            depth += 1
            i += len(PRIVATE_OPEN)
        elif content.startswith(PRIVATE_CLOSE, i):
            if depth > 0:
                depth -= 1
            i += len(PRIVATE_CLOSE)
        else:
            if depth == 0:
                result.append(content[i])
            i += 1
    return "".join(result)


def strip_context_tags(content: str) -> str:
    return CONTEXT_TAG_RE.sub("", content)


def strip_system_reminders(content: str) -> str:
    return SYSTEM_REMINDER_RE.sub("", content)


def strip_memory_tags(content: str) -> str:
    return strip_system_reminders(strip_context_tags(strip_private_tags(content)))


def clean_prompt(content: str) -> str:
    return strip_memory_tags(content).strip()


def is_entirely_private(content: str) -> bool:
    return not clean_prompt(content)


def strip_private_obj(value: Any) -> Any:
    if isinstance(value, str):
        return strip_private_tags(value)
    if isinstance(value, list):
        return [strip_private_obj(item) for item in value]
    if isinstance(value, dict):
        return {key: strip_private_obj(item) for key, item in value.items()}
    return value
