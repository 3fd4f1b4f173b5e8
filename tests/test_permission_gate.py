# tests/test_permission_gate.py

from __future__ import annotations

from voice_todo.capture.permission import PermissionGate
from voice_todo.core.errors import DeviceError, DeviceNotFoundError, DevicePermissionError
from voice_todo.core.models import PermissionState

from .fakes import FakeAudioDevice, FakePermissionStatus


def test_initial_state_is_unknown(gate: PermissionGate) -> None:
    assert gate.state == PermissionState.UNKNOWN
    assert gate.is_blocked is False
    assert gate.message is None


def test_check_without_capture_support_is_unsupported() -> None:
    gate = PermissionGate(FakeAudioDevice(available=False))
    assert gate.check() == PermissionState.UNSUPPORTED
    assert gate.is_blocked is True
    assert gate.message


def test_check_without_permission_subsystem_is_prompt() -> None:
    gate = PermissionGate(FakeAudioDevice(status=None))
    assert gate.check() == PermissionState.PROMPT


def test_check_when_query_fails_is_prompt() -> None:
    gate = PermissionGate(FakeAudioDevice(query_error=TypeError("microphone is not a permission name")))
    assert gate.check() == PermissionState.PROMPT


def test_check_reads_status_and_follows_live_changes() -> None:
    status = FakePermissionStatus(PermissionState.GRANTED)
    gate = PermissionGate(FakeAudioDevice(status=status))
    seen: list[PermissionState] = []
    gate.subscribe(seen.append)

    assert gate.check() == PermissionState.GRANTED

    status.change(PermissionState.DENIED)
    assert gate.state == PermissionState.DENIED
    assert seen == [PermissionState.GRANTED, PermissionState.DENIED]

    # A second check must not register a second platform listener.
    gate.check()
    assert len(status.listeners) == 1


def test_request_grants_and_releases_the_device_immediately() -> None:
    device = FakeAudioDevice()
    gate = PermissionGate(device)

    assert gate.request() == PermissionState.GRANTED
    assert len(device.streams) == 1
    assert device.last_stream.closed == 1
    assert device.last_stream.started == 0


def test_request_refused_is_denied() -> None:
    gate = PermissionGate(FakeAudioDevice(open_error=DevicePermissionError("NotAllowedError")))
    assert gate.request() == PermissionState.DENIED
    assert gate.is_blocked is True
    assert "blocked" in (gate.message or "").lower()


def test_request_without_device_is_unsupported() -> None:
    gate = PermissionGate(FakeAudioDevice(open_error=DeviceNotFoundError("NotFoundError")))
    assert gate.request() == PermissionState.UNSUPPORTED


def test_request_without_capture_api_is_unsupported() -> None:
    device = FakeAudioDevice(available=False)
    gate = PermissionGate(device)
    assert gate.request() == PermissionState.UNSUPPORTED
    assert device.streams == []


def test_request_other_failure_settles_on_denied() -> None:
    gate = PermissionGate(FakeAudioDevice(open_error=DeviceError("device busy")))
    assert gate.request() in (PermissionState.GRANTED, PermissionState.DENIED, PermissionState.UNSUPPORTED)
    assert gate.state == PermissionState.DENIED


def test_listeners_fire_only_on_change_and_unsubscribe() -> None:
    gate = PermissionGate(FakeAudioDevice())
    seen: list[PermissionState] = []
    unsubscribe = gate.subscribe(seen.append)

    gate.mark(PermissionState.GRANTED)
    gate.mark(PermissionState.GRANTED)
    assert seen == [PermissionState.GRANTED]

    unsubscribe()
    gate.mark(PermissionState.DENIED)
    assert seen == [PermissionState.GRANTED]
