# src/voice_todo/core/errors.py

from __future__ import annotations


class VoiceTodoError(Exception):
    """Base class for application errors."""


class RecordNotFoundError(VoiceTodoError):
    def __init__(self, kind: str, record_id: object) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


# ---- microphone device ----


class DeviceError(VoiceTodoError):
    """The input device could not be opened or failed while recording."""


class DevicePermissionError(DeviceError):
    """The user or the platform refused access to the microphone."""


class DeviceNotFoundError(DeviceError):
    """No input device is present."""


class DeviceUnavailableError(DeviceError):
    """The capture backend itself is missing (driver/library not installed)."""


# ---- enrichment ----


class EnrichmentError(VoiceTodoError):
    """One pipeline invocation failed; other invocations are unaffected."""


class TranscriptionError(EnrichmentError):
    pass


class EmptyTranscriptError(TranscriptionError):
    def __init__(self) -> None:
        super().__init__("Speech-to-text returned an empty transcript.")


class ClassificationError(EnrichmentError):
    pass


class UploadError(EnrichmentError):
    pass
