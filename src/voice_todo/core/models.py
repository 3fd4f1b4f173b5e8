# src/voice_todo/core/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

# Category carried by placeholder tasks until enrichment finishes.
PENDING_CATEGORY = "__pending__"
DEFAULT_FALLBACK_CATEGORY = "General"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class PermissionState(StrEnum):
    UNKNOWN = "unknown"
    PROMPT = "prompt"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class RecordingState(StrEnum):
    IDLE = "idle"
    RECORDING = "recording"


class SubmissionKind(StrEnum):
    AUDIO = "audio"
    TEXT = "text"
    IMAGES = "images"


class DropTargetKind(StrEnum):
    CATEGORY = "category"
    WORK_SLOT = "work_slot"


@dataclass(slots=True)
class Task:
    id: int
    content: str
    category: str
    priority: Priority
    is_completed: bool
    is_processing: bool
    is_active: bool
    created_at: float
    completed_at: float | None = None
    image_refs: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Category:
    id: int
    name: str
    color: str | None
    created_at: float


@dataclass(frozen=True, slots=True)
class WorkSlot:
    id: int
    position: int
    task_id: int | None
    notes: str
    created_at: float
    updated_at: float


@dataclass(frozen=True, slots=True)
class ArchivedNote:
    id: int
    task_id: int
    notes: str
    archived_at: float


@dataclass(frozen=True, slots=True)
class AudioArtifact:
    """One finished recording, handed to enrichment exactly once."""

    data: bytes
    mime_type: str = "audio/wav"

    @property
    def filename(self) -> str:
        ext = self.mime_type.split("/", 1)[-1].split(";", 1)[0] or "bin"
        return f"audio.{ext}"


@dataclass(frozen=True, slots=True)
class ImageUpload:
    data: bytes
    mime_type: str = "image/png"
    filename: str = "image.png"


@dataclass(frozen=True, slots=True)
class Submission:
    """
    One raw user submission of exactly one kind.

    Build it with from_text / from_audio / from_images.
    """

    kind: SubmissionKind
    text: str | None = None
    audio: AudioArtifact | None = None
    images: tuple[ImageUpload, ...] = ()

    @classmethod
    def from_text(cls, text: str) -> Submission:
        return cls(kind=SubmissionKind.TEXT, text=text)

    @classmethod
    def from_audio(cls, audio: AudioArtifact) -> Submission:
        return cls(kind=SubmissionKind.AUDIO, audio=audio)

    @classmethod
    def from_images(cls, images: list[ImageUpload], text: str | None = None) -> Submission:
        return cls(kind=SubmissionKind.IMAGES, text=text, images=tuple(images))


@dataclass(frozen=True, slots=True)
class Classification:
    category: str
    priority: Priority
    cleaned_content: str


@dataclass(frozen=True, slots=True)
class DropEvent:
    """A task dragged onto a category chip or a work slot (target may be missing)."""

    task_id: int
    target_kind: DropTargetKind | None = None
    target_id: str | int | None = None
