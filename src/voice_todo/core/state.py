# src/voice_todo/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..capture.permission import PermissionGate
from ..capture.recorder import CaptureSession
from ..categories.registry import CategoryRegistry
from ..enrichment.pipeline import EnrichmentPipeline
from ..ingestion.coordinator import IngestionCoordinator
from ..slots.manager import WorkSlotManager
from ..storage.blob_store import LocalBlobStore
from ..storage.record_store import RecordStore


@dataclass
class AppState:
    # Settings are stored on the state so connectors/commands can read them.
    settings: Any

    store: RecordStore
    blobs: LocalBlobStore
    permissions: PermissionGate
    recorder: CaptureSession
    categories: CategoryRegistry
    slots: WorkSlotManager
    pipeline: EnrichmentPipeline
    coordinator: IngestionCoordinator

    # Whatever backs transcription/classification (OpenAIServices or OfflineServices).
    services: Any = None

    @property
    def offline(self) -> bool:
        return bool(getattr(self.settings, "offline", False))
