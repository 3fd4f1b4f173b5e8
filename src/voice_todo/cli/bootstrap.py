# src/voice_todo/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/blobs/mic/AI services),
- seeds the initial work slots on a fresh database.
"""

from __future__ import annotations

import logging
from typing import Any

from ..capture.devices import SoundDeviceMicrophone
from ..capture.permission import PermissionGate
from ..capture.recorder import CaptureSession
from ..categories.registry import CategoryRegistry
from ..config import get_settings
from ..core.ports import AudioDevice
from ..core.state import AppState
from ..enrichment.pipeline import EnrichmentPipeline
from ..ingestion.coordinator import IngestionCoordinator
from ..llm.client import OpenAIServices
from ..llm.offline import OfflineServices
from ..slots.manager import WorkSlotManager
from ..slots.suggestions import SuggestionService
from ..storage.blob_store import LocalBlobStore
from ..storage.record_store import RecordStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.blobs_dir.mkdir(parents=True, exist_ok=True)


def _seed_work_slots(slots: WorkSlotManager, count: int) -> None:
    if slots.list_slots():
        return
    for _ in range(max(0, int(count))):
        slots.create_slot()


def create_initial_state(
        *,
        settings=None,
        device: AudioDevice | None = None,
        services: Any = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    `device` and `services` are injectable for tests; by default the system
    microphone and the OpenAI-compatible services are used. Without an API key
    the app falls back to OfflineServices (typed notes still get classified).
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = RecordStore(settings.db_path)
    blobs = LocalBlobStore(settings.blobs_dir)

    if services is None:
        try:
            services = OpenAIServices(settings, blobs=blobs)
        except RuntimeError as e:
            logger.info("AI services unavailable (%s); using offline rules.", e)
            services = OfflineServices(fallback_category=settings.fallback_category)

    if device is None:
        device = SoundDeviceMicrophone(sample_rate=settings.sample_rate, channels=settings.channels)

    permissions = PermissionGate(device)
    recorder = CaptureSession(device, permissions)
    categories = CategoryRegistry(store, fallback=settings.fallback_category)
    slots = WorkSlotManager(store, SuggestionService(services))
    pipeline = EnrichmentPipeline(store, categories, services, services, blobs)
    coordinator = IngestionCoordinator(store, pipeline, categories, slots)

    _seed_work_slots(slots, settings.initial_work_slots)

    return AppState(
        settings=settings,
        store=store,
        blobs=blobs,
        permissions=permissions,
        recorder=recorder,
        categories=categories,
        slots=slots,
        pipeline=pipeline,
        coordinator=coordinator,
        services=services,
    )
