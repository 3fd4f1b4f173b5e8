# tests/test_capture_session.py

from __future__ import annotations

from voice_todo.capture.permission import PermissionGate
from voice_todo.capture.recorder import (
    MSG_ALREADY_RECORDING,
    MSG_NO_DEVICE,
    MSG_PERMISSION_DENIED,
    MSG_PERMISSION_REVOKED,
    MSG_RECORDING_ERROR,
    CaptureSession,
)
from voice_todo.core.errors import DeviceError, DeviceNotFoundError, DevicePermissionError
from voice_todo.core.models import PermissionState, RecordingState

from .fakes import FakeAudioDevice, FakePermissionStatus


def _session(device: FakeAudioDevice) -> tuple[CaptureSession, PermissionGate]:
    gate = PermissionGate(device)
    return CaptureSession(device, gate), gate


def test_start_stop_produces_one_artifact(device: FakeAudioDevice, session: CaptureSession) -> None:
    assert session.start() is True
    assert session.state == RecordingState.RECORDING

    stream = device.last_stream
    stream.feed(b"abc")
    stream.queue(b"def")  # flushed by stop()

    artifact = session.stop()
    assert artifact is not None
    assert artifact.data == b"abcdef"
    assert artifact.mime_type == "audio/wav"
    assert session.state == RecordingState.IDLE
    assert stream.closed == 1

    assert session.take_artifact() == artifact
    assert session.take_artifact() is None


def test_start_marks_permission_granted(device: FakeAudioDevice, gate: PermissionGate, session: CaptureSession) -> None:
    session.start()
    assert gate.state == PermissionState.GRANTED
    session.reset()


def test_start_while_recording_is_refused(device: FakeAudioDevice, session: CaptureSession) -> None:
    assert session.start() is True
    assert session.start() is False
    assert session.error == MSG_ALREADY_RECORDING
    assert session.state == RecordingState.RECORDING
    assert len(device.streams) == 1
    session.reset()


def test_stop_without_audio_sets_error(device: FakeAudioDevice, session: CaptureSession) -> None:
    session.start()
    assert session.stop() is None
    assert session.artifact is None
    assert session.error
    assert device.last_stream.closed == 1


def test_stop_when_idle_is_a_noop(session: CaptureSession) -> None:
    assert session.stop() is None
    assert session.error is None


def test_blocked_gate_prevents_start() -> None:
    device = FakeAudioDevice(available=False)
    session, gate = _session(device)

    assert session.start() is False
    assert gate.state == PermissionState.UNSUPPORTED
    assert session.error == gate.message
    assert device.streams == []


def test_denied_on_open_reports_denied() -> None:
    device = FakeAudioDevice(open_error=DevicePermissionError("NotAllowedError"))
    session, gate = _session(device)

    assert session.start() is False
    assert gate.state == PermissionState.DENIED
    assert session.error == MSG_PERMISSION_DENIED
    assert session.state == RecordingState.IDLE


def test_revoked_after_grant_reports_revoked() -> None:
    device = FakeAudioDevice()
    session, gate = _session(device)
    gate.mark(PermissionState.GRANTED)
    device.open_error = DevicePermissionError("NotAllowedError")

    assert session.start() is False
    assert session.error == MSG_PERMISSION_REVOKED


def test_missing_device_reports_no_device() -> None:
    device = FakeAudioDevice(open_error=DeviceNotFoundError("no input device"))
    session, gate = _session(device)

    assert session.start() is False
    assert session.error == MSG_NO_DEVICE
    assert gate.state == PermissionState.UNSUPPORTED


def test_stream_start_failure_releases_device() -> None:
    device = FakeAudioDevice(start_error=RuntimeError("stream refused"))
    session, _gate = _session(device)

    assert session.start() is False
    assert session.state == RecordingState.IDLE
    assert device.last_stream.closed == 1
    assert "Failed to start recording" in (session.error or "")


def test_device_error_mid_recording_aborts_and_releases(device: FakeAudioDevice, session: CaptureSession) -> None:
    session.start()
    stream = device.last_stream
    stream.feed(b"partial")

    stream.fail(DeviceError("device unplugged"))

    assert session.state == RecordingState.IDLE
    assert session.error == MSG_RECORDING_ERROR
    assert session.artifact is None
    assert stream.closed == 1

    # Late stop() after the abort must not close the device again.
    assert session.stop() is None
    assert stream.closed == 1


def test_permission_revoked_mid_recording_aborts() -> None:
    status = FakePermissionStatus(PermissionState.GRANTED)
    device = FakeAudioDevice(status=status)
    session, gate = _session(device)
    gate.check()

    assert session.start() is True
    status.change(PermissionState.DENIED)

    assert session.state == RecordingState.IDLE
    assert session.error == MSG_PERMISSION_REVOKED
    assert device.last_stream.closed == 1


def test_reset_is_idempotent_and_releases_once(device: FakeAudioDevice, session: CaptureSession) -> None:
    session.start()
    device.last_stream.feed(b"x")

    session.reset()
    session.reset()

    assert session.state == RecordingState.IDLE
    assert session.artifact is None
    assert session.error is None
    assert device.last_stream.closed == 1


def test_every_opened_stream_is_closed_exactly_once(device: FakeAudioDevice, session: CaptureSession) -> None:
    for _ in range(3):
        session.start()
        device.last_stream.feed(b"chunk")
        session.stop()
        session.take_artifact()
    session.start()
    session.reset()

    assert len(device.streams) == 4
    assert all(s.closed == 1 for s in device.streams)


def test_snapshot_listeners_see_transitions(session: CaptureSession) -> None:
    states: list[RecordingState] = []
    session.subscribe(lambda snap: states.append(snap.state))

    session.start()
    session.stop()

    assert states[0] == RecordingState.RECORDING
    assert states[-1] == RecordingState.IDLE
