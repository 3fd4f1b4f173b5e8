# src/voice_todo/enrichment/prompts.py

from __future__ import annotations

import re

CLASSIFICATION_PROMPT = """
You turn raw notes (typed, dictated or photographed) into to-do items.
Return JSON only. No markdown. No explanation.

Schema:
{
  "category": "short category name",
  "priority": "low|medium|high",
  "cleanedContent": "the task, rewritten as a short clear action"
}

Rules:
- Prefer one of the existing categories when it fits, spelled exactly as given.
- Only invent a new category when none of the existing ones fits; keep it to one or two words.
- If the note starts with a prefix naming a project or area ("Pour RepNet: ...", "Work: ..."),
  use that name as the category and remove the prefix from cleanedContent.
- priority is "high" for urgent or time-critical items, "low" for someday/maybe items, else "medium".
- cleanedContent keeps the language of the note, fixes dictation errors, starts with a capital letter
  and drops filler words.
- For images, describe the action the image implies, using the accompanying text when present.
""".strip()

CLASSIFICATION_USER_TEMPLATE = """
Existing categories: {categories}

Note:
{content}
""".strip()

SUGGESTION_PROMPT = """
You are a concise, helpful productivity assistant.

Context:
- Task: "{content}"
- Category: {category}
- User notes: "{notes}"

Give ONE short suggestion (1-2 sentences max) that helps the user move this task forward.

The suggestion must be:
- Practical and actionable
- Adapted to the notes when there are any
- In the language of the task
- Encouraging but not condescending

Reply ONLY with JSON: {{"suggestion": "..."}}
""".strip()

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def extract_json(text: str) -> str:
    """Strip markdown code fences that models sometimes wrap around JSON."""
    m = _FENCE_RE.search(text or "")
    if m:
        return m.group(1).strip()
    return (text or "").strip()
