# src/voice_todo/capture/devices.py

from __future__ import annotations

import io
import logging
import threading
import wave
from typing import Any

from ..core.errors import DeviceError, DeviceNotFoundError, DeviceUnavailableError
from ..core.ports import ChunkCallback, ErrorCallback, PermissionStatus

logger = logging.getLogger(__name__)

_SAMPLE_WIDTH = 2  # int16


def _map_portaudio_error(exc: Exception) -> DeviceError:
    text = str(exc).lower()
    # sounddevice reports a missing default input as "Error querying device -1".
    if "querying device" in text:
        return DeviceNotFoundError(str(exc))
    if "device" in text and any(w in text for w in ("no ", "invalid", "unavailable", "not found")):
        return DeviceNotFoundError(str(exc))
    return DeviceError(str(exc) or exc.__class__.__name__)


class _SoundDeviceStream:
    """
    RawInputStream wrapper.

    The PortAudio callback only forwards bytes; an unexpected end of stream is
    reported on a separate thread so the session never waits on the audio thread.
    """

    def __init__(
            self,
            sd: Any,
            *,
            sample_rate: int,
            channels: int,
            device: int | str | None,
            on_chunk: ChunkCallback,
            on_error: ErrorCallback,
    ) -> None:
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._stopping = False
        self._stream = sd.RawInputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="int16",
            device=device,
            callback=self._callback,
            finished_callback=self._finished,
        )

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        self._on_chunk(bytes(indata))

    def _finished(self) -> None:
        if self._stopping:
            return
        err = DeviceError("Input stream ended unexpectedly")
        threading.Thread(target=self._on_error, args=(err,), daemon=True).start()

    def start(self) -> None:
        self._stream.start()

    def stop(self) -> None:
        self._stopping = True
        self._stream.stop()

    def close(self) -> None:
        self._stopping = True
        self._stream.close()


class SoundDeviceMicrophone:
    """
    Microphone backed by PortAudio through the `sounddevice` package.

    Notes:
    - sounddevice is imported lazily; when it (or the PortAudio library) is
      missing, the capture API is reported as unavailable.
    - Desktop audio stacks have no permission query, so query_permission()
      returns None and the gate falls back to "prompt".
    - Recordings are PCM16 and encoded as WAV.
    """

    mime_type = "audio/wav"

    def __init__(self, *, sample_rate: int = 16000, channels: int = 1, device: int | str | None = None) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.device = device
        self._sd: Any = None  # sounddevice module (runtime import)
        self._import_failed = False

    def _module(self) -> Any:
        if self._sd is None and not self._import_failed:
            try:
                import sounddevice as sd  # type: ignore
            except (ImportError, OSError) as e:
                self._import_failed = True
                logger.warning(
                    "Microphone capture disabled: sounddevice/PortAudio failed to import. Error: %s",
                    repr(e),
                )
                return None
            self._sd = sd
        return self._sd

    def is_available(self) -> bool:
        return self._module() is not None

    def query_permission(self) -> PermissionStatus | None:
        return None

    def open_input(self, *, on_chunk: ChunkCallback, on_error: ErrorCallback) -> _SoundDeviceStream:
        sd = self._module()
        if sd is None:
            raise DeviceUnavailableError("sounddevice is not available")
        try:
            sd.query_devices(device=self.device, kind="input")
        except sd.PortAudioError as e:
            raise _map_portaudio_error(e) from e
        except ValueError as e:
            # No input channels on the selected device.
            raise DeviceNotFoundError(str(e)) from e

        try:
            return _SoundDeviceStream(
                sd,
                sample_rate=self.sample_rate,
                channels=self.channels,
                device=self.device,
                on_chunk=on_chunk,
                on_error=on_error,
            )
        except sd.PortAudioError as e:
            raise _map_portaudio_error(e) from e
        except ValueError as e:
            # sounddevice raises ValueError for unknown device names/indices.
            raise DeviceNotFoundError(str(e)) from e

    def encode(self, chunks: list[bytes]) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wav:
            wav.setnchannels(self.channels)
            wav.setsampwidth(_SAMPLE_WIDTH)
            wav.setframerate(self.sample_rate)
            wav.writeframes(b"".join(chunks))
        return buf.getvalue()
