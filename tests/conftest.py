# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from voice_todo.capture.permission import PermissionGate
from voice_todo.capture.recorder import CaptureSession
from voice_todo.categories.registry import CategoryRegistry
from voice_todo.cli.bootstrap import create_initial_state
from voice_todo.core.state import AppState
from voice_todo.enrichment.pipeline import EnrichmentPipeline
from voice_todo.ingestion.coordinator import IngestionCoordinator
from voice_todo.slots.manager import WorkSlotManager
from voice_todo.slots.suggestions import SuggestionService
from voice_todo.storage.record_store import RecordStore

from .fakes import FakeAIServices, FakeAudioDevice, FakeBlobStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment.
    """
    return SimpleNamespace(
        app_name="voice-todo-test",
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "tasks.sqlite3",
        blobs_dir=tmp_path / "data" / "blobs",
        llm_models=["test-model"],
        fallback_category="General",
        initial_work_slots=2,
        sample_rate=16000,
        channels=1,
        console_enabled=True,
        offline=True,
    )


@pytest.fixture()
def store(tmp_path: Path) -> RecordStore:
    return RecordStore(tmp_path / "records.sqlite3")


@pytest.fixture()
def services() -> FakeAIServices:
    return FakeAIServices()


@pytest.fixture()
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def categories(store: RecordStore) -> CategoryRegistry:
    return CategoryRegistry(store, fallback="General")


@pytest.fixture()
def slots(store: RecordStore, services: FakeAIServices) -> WorkSlotManager:
    return WorkSlotManager(store, SuggestionService(services))


@pytest.fixture()
def pipeline(
        store: RecordStore,
        categories: CategoryRegistry,
        services: FakeAIServices,
        blobs: FakeBlobStore,
) -> EnrichmentPipeline:
    return EnrichmentPipeline(store, categories, services, services, blobs)


@pytest.fixture()
def coordinator(
        store: RecordStore,
        pipeline: EnrichmentPipeline,
        categories: CategoryRegistry,
        slots: WorkSlotManager,
) -> IngestionCoordinator:
    return IngestionCoordinator(store, pipeline, categories, slots)


@pytest.fixture()
def device() -> FakeAudioDevice:
    return FakeAudioDevice()


@pytest.fixture()
def gate(device: FakeAudioDevice) -> PermissionGate:
    return PermissionGate(device)


@pytest.fixture()
def session(device: FakeAudioDevice, gate: PermissionGate) -> CaptureSession:
    return CaptureSession(device, gate)


@pytest.fixture()
def state(settings: SimpleNamespace, device: FakeAudioDevice, services: FakeAIServices) -> AppState:
    """
    AppState built by the real composition root, with fake device and AI services.

    NOTE: the SQLite store and the blob directory are real (under tmp_path)
    because their correctness is part of what we want to test.
    """
    return create_initial_state(settings=settings, device=device, services=services)
