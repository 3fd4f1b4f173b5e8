# src/voice_todo/capture/recorder.py

"""
Microphone capture session.

State machine:
    idle --start()--> recording --stop()--> idle (+ artifact)
                                --device error / permission revoked--> idle (+ error)

The device stream is opened in start() and closed exactly once on every
transition out of recording.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from ..core.errors import DeviceNotFoundError, DevicePermissionError, DeviceUnavailableError
from ..core.models import AudioArtifact, PermissionState, RecordingState
from ..core.ports import AudioDevice, InputStream
from .permission import PermissionGate

logger = logging.getLogger(__name__)

MSG_ALREADY_RECORDING = "A recording is already in progress."
MSG_PERMISSION_REVOKED = "Microphone permission was revoked. Allow access again to keep recording."
MSG_PERMISSION_DENIED = "Microphone access was denied. Allow microphone access in your system settings."
MSG_NO_DEVICE = "No microphone was found. Connect one and try again."
MSG_RECORDING_ERROR = "Recording error occurred."


@dataclass(frozen=True, slots=True)
class CaptureSnapshot:
    state: RecordingState
    artifact: AudioArtifact | None
    error: str | None


SnapshotListener = Callable[[CaptureSnapshot], None]


class CaptureSession:
    """
    Exclusive audio recorder built on top of PermissionGate.

    Public surface is start() / stop() / reset() plus the observable snapshot.
    Device callbacks (chunks, errors) arrive on the device thread and are folded
    into state transitions under a lock.
    """

    def __init__(self, device: AudioDevice, gate: PermissionGate) -> None:
        self._device = device
        self._gate = gate
        self._lock = threading.RLock()
        # Chunks arrive on the device thread while stop() may be waiting for that
        # thread, so they are guarded by their own lock.
        self._chunk_lock = threading.Lock()

        self._state = RecordingState.IDLE
        self._artifact: AudioArtifact | None = None
        self._error: str | None = None

        self._stream: InputStream | None = None
        self._chunks: list[bytes] = []
        self._listeners: list[SnapshotListener] = []

        gate.subscribe(self._on_permission_change)

    # ---- observable state ----

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def artifact(self) -> AudioArtifact | None:
        return self._artifact

    @property
    def error(self) -> str | None:
        return self._error

    def snapshot(self) -> CaptureSnapshot:
        with self._lock:
            return CaptureSnapshot(state=self._state, artifact=self._artifact, error=self._error)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Capture listener failed")

    # ---- transitions ----

    def start(self) -> bool:
        """Begin recording; returns False (with error set) when blocked or on failure."""
        with self._lock:
            if self._state == RecordingState.RECORDING:
                self._error = MSG_ALREADY_RECORDING
                self._emit()
                return False

            self._error = None
            self._artifact = None
            self._drain_chunks()

            gate_state = self._gate.state
            if gate_state == PermissionState.UNKNOWN:
                gate_state = self._gate.check()
            if gate_state in (PermissionState.DENIED, PermissionState.UNSUPPORTED):
                self._error = self._gate.message
                self._emit()
                return False

            try:
                stream = self._device.open_input(on_chunk=self._on_chunk, on_error=self._on_device_error)
            except DevicePermissionError:
                revoked = gate_state == PermissionState.GRANTED
                self._gate.mark(PermissionState.DENIED)
                self._error = MSG_PERMISSION_REVOKED if revoked else MSG_PERMISSION_DENIED
                self._emit()
                return False
            except (DeviceNotFoundError, DeviceUnavailableError):
                self._gate.mark(PermissionState.UNSUPPORTED)
                self._error = MSG_NO_DEVICE
                self._emit()
                return False
            except Exception as e:
                logger.warning("Failed to open microphone", exc_info=True)
                self._error = f"Failed to start recording: {e}" if str(e) else "Failed to start recording."
                self._emit()
                return False

            self._stream = stream
            try:
                stream.start()
            except Exception as e:
                logger.warning("Failed to start microphone stream", exc_info=True)
                self._release()
                self._error = f"Failed to start recording: {e}" if str(e) else "Failed to start recording."
                self._emit()
                return False

            if self._gate.state != PermissionState.GRANTED:
                self._gate.mark(PermissionState.GRANTED)

            self._state = RecordingState.RECORDING
            logger.info("Recording started")
            self._emit()
            return True

    def stop(self) -> AudioArtifact | None:
        """Finish recording and expose the artifact; no-op unless recording."""
        with self._lock:
            if self._state != RecordingState.RECORDING:
                return None

            stream = self._stream
            try:
                if stream is not None:
                    # Flushes the last buffered chunks through on_chunk.
                    stream.stop()
            except Exception:
                logger.warning("Microphone stop failed; keeping chunks received so far", exc_info=True)
            finally:
                self._release()
                self._state = RecordingState.IDLE

            chunks = self._drain_chunks()
            try:
                data = self._device.encode(chunks) if chunks else b""
            except Exception:
                logger.exception("Failed to encode recording")
                data = b""

            if data:
                self._artifact = AudioArtifact(data=data, mime_type=self._device.mime_type)
                logger.info("Recording stopped bytes=%d", len(data))
            else:
                self._artifact = None
                self._error = "Nothing was recorded."
                logger.info("Recording stopped without audio")

            self._emit()
            return self._artifact

    def reset(self) -> None:
        """Discard any artifact/error and force-stop an active recording. Idempotent."""
        with self._lock:
            if self._state == RecordingState.RECORDING:
                stream = self._stream
                try:
                    if stream is not None:
                        stream.stop()
                except Exception:
                    logger.debug("Microphone stop during reset failed", exc_info=True)
                finally:
                    self._release()
                    self._state = RecordingState.IDLE

            changed = self._artifact is not None or self._error is not None
            self._artifact = None
            self._error = None
            self._drain_chunks()
            if changed:
                self._emit()

    def take_artifact(self) -> AudioArtifact | None:
        """Hand the finished recording over exactly once."""
        with self._lock:
            artifact, self._artifact = self._artifact, None
            return artifact

    # ---- internals ----

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception:
            logger.warning("Failed to release microphone", exc_info=True)

    def _abort(self, message: str) -> None:
        with self._lock:
            if self._state != RecordingState.RECORDING:
                return
            self._release()
            self._state = RecordingState.IDLE
            self._drain_chunks()
            self._artifact = None
            self._error = message
            self._emit()

    def _drain_chunks(self) -> list[bytes]:
        with self._chunk_lock:
            chunks, self._chunks = self._chunks, []
        return chunks

    def _on_chunk(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._chunk_lock:
            self._chunks.append(bytes(chunk))

    def _on_device_error(self, exc: Exception) -> None:
        logger.warning("Microphone error during recording: %r", exc)
        if isinstance(exc, DevicePermissionError):
            # Listeners of the gate abort the session; abort here too in case
            # the gate already knew.
            self._gate.mark(PermissionState.DENIED)
            self._abort(MSG_PERMISSION_REVOKED)
            return
        self._abort(MSG_RECORDING_ERROR)

    def _on_permission_change(self, state: PermissionState) -> None:
        if state == PermissionState.DENIED:
            self._abort(MSG_PERMISSION_REVOKED)
