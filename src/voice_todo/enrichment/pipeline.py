# src/voice_todo/enrichment/pipeline.py

"""
Enrichment pipeline.

One invocation turns one raw submission into a classified task:
- normalize: audio -> transcript, images -> blob refs, text unchanged
- classify: category / priority / cleaned content (known categories are advisory)
- materialize: update the placeholder task in place (or create the task)
- register: ensure the category exists

Invocations share no mutable state and are not retried. Errors propagate to
the caller, which owns the invocation boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..categories.registry import CategoryRegistry
from ..core.errors import ClassificationError, EmptyTranscriptError, TranscriptionError, UploadError
from ..core.models import PENDING_CATEGORY, Classification, Priority, Submission, SubmissionKind, Task
from ..core.ports import BlobStore, Classifier, Transcriber
from ..storage.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NormalizedInput:
    content: str
    image_refs: list[str]


def parse_classification(data: Any) -> Classification:
    """Validate a raw classifier response; any missing/invalid field is fatal."""
    if not isinstance(data, dict):
        raise ClassificationError(f"Classifier returned {type(data).__name__}, expected an object")

    category = data.get("category")
    if not isinstance(category, str) or not category.strip():
        raise ClassificationError("Classifier response has no category")
    if category.strip() == PENDING_CATEGORY:
        raise ClassificationError(f"Classifier returned a reserved category: {category!r}")

    raw_priority = data.get("priority")
    try:
        priority = Priority(str(raw_priority).strip().lower()) if isinstance(raw_priority, str) else None
    except ValueError:
        priority = None
    if priority is None:
        raise ClassificationError(f"Classifier returned an invalid priority: {raw_priority!r}")

    cleaned = data.get("cleanedContent")
    if not isinstance(cleaned, str):
        raise ClassificationError("Classifier response has no cleanedContent")

    return Classification(category=category.strip(), priority=priority, cleaned_content=cleaned.strip())


class EnrichmentPipeline:
    def __init__(
            self,
            store: RecordStore,
            categories: CategoryRegistry,
            transcriber: Transcriber,
            classifier: Classifier,
            blobs: BlobStore,
    ) -> None:
        self._store = store
        self._categories = categories
        self._transcriber = transcriber
        self._classifier = classifier
        self._blobs = blobs

    async def run(self, submission: Submission, *, placeholder_id: int | None = None) -> Task | None:
        """
        Enrich one submission.

        Returns the materialized task, or None when the placeholder was deleted
        while enrichment was in flight (the result is dropped).
        """
        normalized = await self.normalize(submission)
        classification = await self.classify(normalized)
        task = self.materialize(normalized, classification, placeholder_id=placeholder_id)
        if task is None:
            return None
        self._categories.ensure(classification.category)
        return task

    async def normalize(self, submission: Submission) -> NormalizedInput:
        if submission.kind == SubmissionKind.AUDIO:
            audio = submission.audio
            if audio is None or not audio.data:
                raise TranscriptionError("Audio submission has no data")
            transcript = await self._transcriber.transcribe(audio.data, mime_type=audio.mime_type)
            text = (transcript or "").strip()
            if not text:
                raise EmptyTranscriptError()
            logger.debug("Transcribed %d bytes -> %d chars", len(audio.data), len(text))
            return NormalizedInput(content=text, image_refs=[])

        if submission.kind == SubmissionKind.IMAGES:
            if not submission.images:
                raise UploadError("Image submission has no images")
            refs: list[str] = []
            for image in submission.images:
                try:
                    ref = await self._blobs.upload(image.data, content_type=image.mime_type)
                except UploadError:
                    raise
                except Exception as e:
                    raise UploadError(f"Upload of {image.filename} failed: {e}") from e
                refs.append(ref)
            return NormalizedInput(content=(submission.text or "").strip(), image_refs=refs)

        return NormalizedInput(content=submission.text or "", image_refs=[])

    async def classify(self, normalized: NormalizedInput) -> Classification:
        known = self._categories.list_categories()
        raw = await self._classifier.classify(
            normalized.content,
            known_categories=known,
            image_refs=list(normalized.image_refs),
        )
        return parse_classification(raw)

    def materialize(
            self,
            normalized: NormalizedInput,
            classification: Classification,
            *,
            placeholder_id: int | None = None,
    ) -> Task | None:
        content = classification.cleaned_content or normalized.content

        with self._store.transaction() as tx:
            if placeholder_id is None:
                return tx.create_task(
                    content=content,
                    category=classification.category,
                    priority=classification.priority,
                    image_refs=normalized.image_refs,
                )

            fields: dict[str, Any] = {
                "content": content,
                "category": classification.category,
                "priority": classification.priority,
                "is_processing": False,
            }
            if normalized.image_refs:
                fields["image_refs"] = normalized.image_refs
            if not tx.update_task(placeholder_id, **fields):
                logger.info("Placeholder task %s is gone; dropping enrichment result", placeholder_id)
                return None
            return tx.get_task(placeholder_id)
