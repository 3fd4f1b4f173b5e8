# tests/test_enrichment_pipeline.py

from __future__ import annotations

import pytest

from voice_todo.categories.registry import CategoryRegistry
from voice_todo.core.errors import ClassificationError, EmptyTranscriptError, TranscriptionError, UploadError
from voice_todo.core.models import (
    PENDING_CATEGORY,
    AudioArtifact,
    ImageUpload,
    Priority,
    Submission,
)
from voice_todo.enrichment.pipeline import EnrichmentPipeline, parse_classification
from voice_todo.storage.record_store import RecordStore

from .fakes import FakeAIServices, FakeBlobStore


def _placeholder(store: RecordStore, content: str = "...") -> int:
    return store.create_task(content=content, category=PENDING_CATEGORY, is_processing=True).id


def test_parse_classification_accepts_valid_response() -> None:
    c = parse_classification({"category": " RepNet ", "priority": "HIGH", "cleanedContent": " Ship it "})
    assert c.category == "RepNet"
    assert c.priority == Priority.HIGH
    assert c.cleaned_content == "Ship it"


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "not an object",
        {"priority": "low", "cleanedContent": "x"},
        {"category": "", "priority": "low", "cleanedContent": "x"},
        {"category": "A", "cleanedContent": "x"},
        {"category": "A", "priority": "urgent", "cleanedContent": "x"},
        {"category": "A", "priority": "low"},
        {"category": "A", "priority": "low", "cleanedContent": 3},
        {"category": PENDING_CATEGORY, "priority": "low", "cleanedContent": "x"},
    ],
)
def test_parse_classification_rejects_invalid_response(raw) -> None:
    with pytest.raises(ClassificationError):
        parse_classification(raw)


@pytest.mark.asyncio
async def test_text_submission_updates_placeholder_in_place(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        services: FakeAIServices,
) -> None:
    services.responses["Pour RepNet: déplacer le bouton"] = {
        "category": "RepNet",
        "priority": "medium",
        "cleanedContent": "Déplacer le bouton",
    }
    pid = _placeholder(store, "Pour RepNet: déplacer le bouton")

    task = await pipeline.run(Submission.from_text("Pour RepNet: déplacer le bouton"), placeholder_id=pid)

    assert task is not None
    assert task.id == pid
    assert task.category == "RepNet"
    assert task.priority == Priority.MEDIUM
    assert task.content == "Déplacer le bouton"
    assert task.is_processing is False
    assert store.count_tasks() == 1


@pytest.mark.asyncio
async def test_new_category_is_registered_after_materialize(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    services.responses["call the plumber"] = {"category": "Home", "priority": "high", "cleanedContent": "Call the plumber"}

    await pipeline.run(Submission.from_text("call the plumber"))

    assert "Home" in categories.list_categories()
    with store.transaction() as tx:
        assert tx.get_category("Home") is not None


@pytest.mark.asyncio
async def test_known_categories_are_passed_to_the_classifier(
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    categories.ensure("Work")
    categories.ensure("Home")

    await pipeline.run(Submission.from_text("anything"))

    assert services.classify_calls[0].known_categories == ["Work", "Home"]


@pytest.mark.asyncio
async def test_classifier_may_invent_a_category(
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    categories.ensure("Work")
    services.responses["water plants"] = {"category": "Garden", "priority": "low", "cleanedContent": "Water plants"}

    task = await pipeline.run(Submission.from_text("water plants"))

    assert task is not None and task.category == "Garden"
    assert categories.list_categories() == ["Work", "Garden"]


@pytest.mark.asyncio
async def test_audio_is_transcribed_then_classified(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        services: FakeAIServices,
) -> None:
    services.transcripts[b"RIFF-1"] = "  acheter du pain  "
    pid = _placeholder(store)

    task = await pipeline.run(Submission.from_audio(AudioArtifact(b"RIFF-1")), placeholder_id=pid)

    assert services.transcribe_calls == [b"RIFF-1"]
    assert services.classify_calls[0].content == "acheter du pain"
    assert task is not None and task.content == "acheter du pain"


@pytest.mark.asyncio
async def test_empty_transcript_fails_and_leaves_placeholder(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        services: FakeAIServices,
) -> None:
    services.transcripts[b"silence"] = "   "
    pid = _placeholder(store)

    with pytest.raises(EmptyTranscriptError):
        await pipeline.run(Submission.from_audio(AudioArtifact(b"silence")), placeholder_id=pid)

    assert services.classify_calls == []
    assert store.get_task(pid).is_processing is True


@pytest.mark.asyncio
async def test_transcription_failure_propagates(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        services: FakeAIServices,
) -> None:
    services.transcribe_error = TranscriptionError("service down")
    pid = _placeholder(store)

    with pytest.raises(TranscriptionError):
        await pipeline.run(Submission.from_audio(AudioArtifact(b"x")), placeholder_id=pid)
    assert store.get_task(pid).category == PENDING_CATEGORY


@pytest.mark.asyncio
async def test_invalid_priority_is_fatal_and_writes_nothing(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    services.responses["note"] = {"category": "Work", "priority": "urgent", "cleanedContent": "Note"}
    pid = _placeholder(store, "note")

    with pytest.raises(ClassificationError):
        await pipeline.run(Submission.from_text("note"), placeholder_id=pid)

    task = store.get_task(pid)
    assert task.is_processing is True
    assert task.content == "note"
    assert categories.list_categories() == []


@pytest.mark.asyncio
async def test_images_are_uploaded_in_order_and_attached(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        services: FakeAIServices,
        blobs: FakeBlobStore,
) -> None:
    images = [ImageUpload(b"one", "image/png", "1.png"), ImageUpload(b"two", "image/jpeg", "2.jpg")]
    pid = _placeholder(store)

    task = await pipeline.run(Submission.from_images(images, "whiteboard"), placeholder_id=pid)

    assert task is not None
    assert [blobs.blobs[ref] for ref in task.image_refs] == [b"one", b"two"]
    assert services.classify_calls[0].image_refs == task.image_refs
    assert services.classify_calls[0].content == "whiteboard"


@pytest.mark.asyncio
async def test_upload_failure_aborts_before_classification(
        store: RecordStore,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    pipeline = EnrichmentPipeline(store, categories, services, services, FakeBlobStore(fail_on=2))
    images = [ImageUpload(b"one"), ImageUpload(b"two")]

    with pytest.raises(UploadError):
        await pipeline.run(Submission.from_images(images))

    assert services.classify_calls == []


@pytest.mark.asyncio
async def test_deleted_placeholder_drops_the_result(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    services.responses["late"] = {"category": "Late", "priority": "low", "cleanedContent": "Late"}
    pid = _placeholder(store, "late")
    store.remove_task(pid)

    assert await pipeline.run(Submission.from_text("late"), placeholder_id=pid) is None
    assert store.count_tasks() == 0
    assert "Late" not in categories.list_categories()


@pytest.mark.asyncio
async def test_without_placeholder_a_task_is_created(store: RecordStore, pipeline: EnrichmentPipeline) -> None:
    task = await pipeline.run(Submission.from_text("fresh"))
    assert task is not None
    assert task.is_processing is False
    assert [t.id for t in store.list_tasks()] == [task.id]


@pytest.mark.asyncio
async def test_reserved_category_leaves_placeholder_processing(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        services: FakeAIServices,
) -> None:
    services.responses["sneaky"] = {"category": PENDING_CATEGORY, "priority": "low", "cleanedContent": "Sneaky"}
    pid = _placeholder(store, "sneaky")

    with pytest.raises(ClassificationError):
        await pipeline.run(Submission.from_text("sneaky"), placeholder_id=pid)

    task = store.get_task(pid)
    assert task.is_processing is True
    assert task.content == "sneaky"
    assert categories.list_categories() == []
