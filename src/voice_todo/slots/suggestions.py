# src/voice_todo/slots/suggestions.py

from __future__ import annotations

import json
import logging

from ..core.ports import TextCompleter
from ..enrichment.prompts import SUGGESTION_PROMPT, extract_json

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION = "Start by defining your very first action."


class SuggestionService:
    """One short, actionable hint for the task a user is focusing on."""

    def __init__(self, completer: TextCompleter) -> None:
        self._completer = completer

    async def suggest(self, *, content: str, category: str, notes: str) -> str:
        prompt = SUGGESTION_PROMPT.format(
            content=content,
            category=category,
            notes=notes.strip() or "(no notes yet)",
        )
        try:
            raw = await self._completer.complete(prompt, max_tokens=150)
        except RuntimeError as e:
            logger.info("Suggestion unavailable: %s", e)
            return DEFAULT_SUGGESTION
        if not raw.strip():
            return DEFAULT_SUGGESTION
        try:
            data = json.loads(extract_json(raw))
        except ValueError:
            logger.debug("Suggestion reply is not JSON: %r", raw[:200])
            return DEFAULT_SUGGESTION
        suggestion = data.get("suggestion") if isinstance(data, dict) else None
        if not isinstance(suggestion, str) or not suggestion.strip():
            return DEFAULT_SUGGESTION
        return suggestion.strip()
