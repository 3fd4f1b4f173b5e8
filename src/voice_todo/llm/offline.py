# src/voice_todo/llm/offline.py

from __future__ import annotations

import re
from typing import Any

from ..core.errors import TranscriptionError
from ..core.models import DEFAULT_FALLBACK_CATEGORY, Priority

_PREFIX_RE = re.compile(r"^\s*(?:pour|for)\s+([^:\n]{1,40}?)\s*:\s*(.+)$", re.IGNORECASE | re.DOTALL)
# "Work: call Bob" but not "Call at 10:30"
_LABEL_RE = re.compile(r"^\s*([^\s:\d][^:\n\d]{0,30}?)\s*:\s+(.+)$", re.DOTALL)

_HIGH_WORDS = ("urgent", "asap", "immediately", "today", "tonight", "deadline", "aujourd'hui", "vite")
_LOW_WORDS = ("someday", "maybe", "eventually", "one day", "un jour", "peut-être", "peut-etre")


def _tidy(text: str) -> str:
    text = " ".join((text or "").split())
    return text[:1].upper() + text[1:] if text else text


def _priority(text: str) -> Priority:
    low = text.lower()
    if any(w in low for w in _HIGH_WORDS):
        return Priority.HIGH
    if any(w in low for w in _LOW_WORDS):
        return Priority.LOW
    return Priority.MEDIUM


def _reuse_known(name: str, known: list[str]) -> str:
    for k in known:
        if k == name:
            return k
    for k in known:
        if k.lower() == name.lower():
            return k
    return name


class OfflineServices:
    """
    Deterministic stand-in for the AI services, used when no API key is configured.

    - transcribe(): always fails (speech needs a real model)
    - classify(): prefix / keyword rules, same JSON shape as the real classifier
    - complete(): empty reply (callers fall back to their defaults)
    """

    def __init__(self, *, fallback_category: str = DEFAULT_FALLBACK_CATEGORY) -> None:
        self.fallback_category = fallback_category

    async def transcribe(self, audio: bytes, *, mime_type: str) -> str:
        raise TranscriptionError(
            "Speech-to-text is not configured. Set VTODO_OPENAI_API_KEY to enable voice input."
        )

    async def classify(
            self,
            content: str,
            *,
            known_categories: list[str],
            image_refs: list[str],
    ) -> dict[str, Any]:
        return classify_by_rules(
            content,
            known_categories=known_categories,
            has_images=bool(image_refs),
            fallback=self.fallback_category,
        )

    async def complete(self, prompt: str, *, max_tokens: int = 150) -> str:
        return ""


def classify_by_rules(
        content: str,
        *,
        known_categories: list[str],
        has_images: bool = False,
        fallback: str = DEFAULT_FALLBACK_CATEGORY,
) -> dict[str, Any]:
    text = (content or "").strip()
    category: str | None = None
    body = text

    m = _PREFIX_RE.match(text)
    if m:
        category, body = m.group(1).strip(), m.group(2)
    else:
        m = _LABEL_RE.match(text)
        if m and len(m.group(1).split()) <= 3:
            category, body = m.group(1).strip(), m.group(2)

    if category:
        category = _reuse_known(category, known_categories)
    else:
        low = text.lower()
        for name in known_categories:
            if re.search(rf"(?<!\w){re.escape(name.lower())}(?!\w)", low):
                category = name
                break

    cleaned = _tidy(body)
    if not cleaned and has_images:
        cleaned = "Review the attached image"

    return {
        "category": category or fallback,
        "priority": _priority(text).value,
        "cleanedContent": cleaned,
    }
