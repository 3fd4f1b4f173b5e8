# src/voice_todo/capture/permission.py

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable

from ..core.errors import DeviceNotFoundError, DevicePermissionError
from ..core.models import PermissionState
from ..core.ports import AudioDevice, PermissionListener

logger = logging.getLogger(__name__)

_MESSAGES = {
    PermissionState.DENIED: (
        "Microphone access is blocked. Allow microphone access in your system settings, then try again."
    ),
    PermissionState.UNSUPPORTED: (
        "Voice input is not available here: no microphone or audio capture support was found."
    ),
}


class PermissionGate:
    """
    Tracks microphone permission.

    check()   - passive: reads the platform permission (never prompts, never raises)
    request() - active: opens the device once and releases it immediately

    request() always settles on granted / denied / unsupported.
    """

    def __init__(self, device: AudioDevice) -> None:
        self._device = device
        self._state = PermissionState.UNKNOWN
        self._listeners: list[PermissionListener] = []
        self._watching = False

    @property
    def state(self) -> PermissionState:
        return self._state

    @property
    def is_blocked(self) -> bool:
        return self._state in (PermissionState.DENIED, PermissionState.UNSUPPORTED)

    @property
    def message(self) -> str | None:
        """User-facing explanation for a blocked state, None otherwise."""
        return _MESSAGES.get(self._state)

    def subscribe(self, listener: PermissionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_state(self, state: PermissionState) -> PermissionState:
        if state == self._state:
            return state
        old, self._state = self._state, state
        logger.info("Microphone permission %s -> %s", old.value, state.value)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Permission listener failed")
        return state

    def check(self) -> PermissionState:
        if not self._device.is_available():
            return self._set_state(PermissionState.UNSUPPORTED)

        try:
            status = self._device.query_permission()
        except Exception as e:
            # Permission subsystem exists but can't answer for the microphone.
            logger.debug("Permission query failed (%s); assuming prompt", e.__class__.__name__)
            return self._set_state(PermissionState.PROMPT)

        if status is None:
            return self._set_state(PermissionState.PROMPT)

        if not self._watching:
            status.add_listener(self._set_state)
            self._watching = True

        return self._set_state(PermissionState(status.state))

    def request(self) -> PermissionState:
        if not self._device.is_available():
            return self._set_state(PermissionState.UNSUPPORTED)

        try:
            stream = self._device.open_input(on_chunk=_ignore_chunk, on_error=_ignore_error)
        except DevicePermissionError:
            return self._set_state(PermissionState.DENIED)
        except DeviceNotFoundError:
            return self._set_state(PermissionState.UNSUPPORTED)
        except Exception:
            logger.warning("Microphone request failed; treating as denied", exc_info=True)
            return self._set_state(PermissionState.DENIED)

        try:
            stream.close()
        except Exception:
            logger.warning("Failed to release microphone after permission request", exc_info=True)

        return self._set_state(PermissionState.GRANTED)

    def mark(self, state: PermissionState) -> None:
        """Record a state learned elsewhere (e.g. a refusal during recording start)."""
        self._set_state(state)


def _ignore_chunk(_chunk: bytes) -> None:
    return


def _ignore_error(_exc: Exception) -> None:
    return
