# src/voice_todo/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the microphone backend and the speech/LLM/storage providers
swappable and makes testing easier.
"""

from collections.abc import Callable
from typing import Any, Protocol

from .models import PermissionState

ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]
PermissionListener = Callable[[PermissionState], None]


# ---- microphone ----


class PermissionStatus(Protocol):
    """Live view of the platform's microphone permission."""

    @property
    def state(self) -> PermissionState: ...

    def add_listener(self, listener: PermissionListener) -> None: ...


class InputStream(Protocol):
    """
    An opened input device.

    close() releases the device; it is called exactly once per opened stream.
    """

    def start(self) -> None: ...
    def stop(self) -> None: ...
    def close(self) -> None: ...


class AudioDevice(Protocol):
    mime_type: str

    def is_available(self) -> bool:
        """False when the capture API itself is absent."""
        ...

    def query_permission(self) -> PermissionStatus | None:
        """None when the platform has no permission subsystem."""
        ...

    def open_input(self, *, on_chunk: ChunkCallback, on_error: ErrorCallback) -> InputStream:
        """
        Acquire the device.

        Raises DevicePermissionError / DeviceNotFoundError / DeviceError.
        """
        ...

    def encode(self, chunks: list[bytes]) -> bytes: ...


# ---- external services ----


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, *, mime_type: str) -> str: ...


class Classifier(Protocol):
    """Returns the raw response object; validation happens in the pipeline."""

    async def classify(
            self,
            content: str,
            *,
            known_categories: list[str],
            image_refs: list[str],
    ) -> dict[str, Any]: ...


class TextCompleter(Protocol):
    async def complete(self, prompt: str, *, max_tokens: int = 150) -> str: ...


class BlobStore(Protocol):
    async def upload(self, data: bytes, *, content_type: str) -> str: ...
    async def read(self, ref: str) -> bytes: ...
