import json

import pytest

from attendance_live.client.exceptions import CameraError, TransientError, ValidationError, ErrorCodes
from attendance_live.client.scanner import (
    CameraHandle, ScannerClient, ScannerState, enumerate_cameras, parse_args, parse_credential,
)


class FakeCapture:
    def __init__(self, opened=True, frames=()):
        self.opened = opened
        self.frames = list(frames)
        self.released = False

    def isOpened(self):
        return self.opened and not self.released

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


class FakeCameras:
    """ index → 프레임 목록. 열린 캡처는 모두 기록해서 반납 여부를 확인 """

    def __init__(self, devices):
        self.devices = devices
        self.opened = []

    def __call__(self, index):
        capture = FakeCapture(opened=index in self.devices, frames=self.devices.get(index, ()))
        self.opened.append(capture)
        return capture

    def all_released(self):
        return all(capture.released for capture in self.opened)


class FakeApi:
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = []

    def check_in(self, credential):
        self.calls.append(credential)
        if self.errors:
            raise self.errors.pop(0)
        return {"status": "ok", "sessionId": "s1", "attendanceStatus": "PRESENT", "alreadyMarked": False}


def decode_text(frame):
    # 테스트 프레임은 QR 내용 문자열 그 자체 ("" = QR 없음)
    return frame or None


def make_scanner(api, cameras, **kwargs):
    kwargs.setdefault("camera_limit", 2)
    kwargs.setdefault("max_frames", 20)
    return ScannerClient(api, camera_opener=cameras, decoder=decode_text, **kwargs)


def test_scan_success_releases_camera():
    cameras = FakeCameras({0: ["", "", "token-123"]})
    api = FakeApi()
    states = []
    scanner = make_scanner(api, cameras, on_state=states.append)

    result = scanner.scan()

    assert result["attendanceStatus"] == "PRESENT"
    assert api.calls == ["token-123"]
    assert scanner.state == ScannerState.SUCCESS
    assert states == [
        ScannerState.ENUMERATING_CAMERAS, ScannerState.STREAMING, ScannerState.DECODED,
        ScannerState.SUBMITTING, ScannerState.SUCCESS,
    ]
    assert not scanner.camera_active
    assert cameras.all_released()


def test_close_while_streaming_releases_camera():
    cameras = FakeCameras({0: [""] * 10})
    api = FakeApi()
    scanner = None

    def on_state(state):
        if state == ScannerState.STREAMING:
            assert scanner.camera_active
            scanner.close()

    scanner = make_scanner(api, cameras, on_state=on_state)
    assert scanner.scan() is None
    assert scanner.state == ScannerState.IDLE
    assert api.calls == []
    assert not scanner.camera_active
    assert cameras.all_released()


def test_no_qr_found_is_failure_and_releases():
    cameras = FakeCameras({0: [""] * 5})
    scanner = make_scanner(FakeApi(), cameras, max_frames=5)
    assert scanner.scan() is None
    assert scanner.state == ScannerState.FAILURE
    assert scanner.error.code == ErrorCodes.NO_QR_FOUND
    assert cameras.all_released()


def test_no_camera_is_camera_error():
    cameras = FakeCameras({})
    scanner = make_scanner(FakeApi(), cameras)
    assert scanner.scan() is None
    assert scanner.state == ScannerState.CAMERA_ERROR
    assert isinstance(scanner.error, CameraError)
    assert cameras.all_released()


def test_json_envelope_is_unwrapped():
    cameras = FakeCameras({0: [json.dumps({"qrToken": "abc", "classId": 100})]})
    api = FakeApi()
    make_scanner(api, cameras).scan()
    assert api.calls == ["abc"]


def test_legacy_payload_without_token_fails():
    cameras = FakeCameras({0: [json.dumps({"sessionId": "s1", "classId": 100})]})
    api = FakeApi()
    scanner = make_scanner(api, cameras)
    scanner.scan()
    assert scanner.state == ScannerState.FAILURE
    assert scanner.error.code == ErrorCodes.INVALID_CREDENTIAL
    assert api.calls == []


def test_retry_resubmits_without_reopening_camera():
    cameras = FakeCameras({0: ["token-1"]})
    api = FakeApi(errors=[TransientError(ErrorCodes.NETWORK_ERROR, "offline")])
    scanner = make_scanner(api, cameras)

    assert scanner.scan() is None
    assert scanner.state == ScannerState.FAILURE
    assert scanner.error.retryable
    opened_before = len(cameras.opened)

    assert scanner.retry()["status"] == "ok"
    assert scanner.state == ScannerState.SUCCESS
    assert api.calls == ["token-1", "token-1"]
    assert len(cameras.opened) == opened_before


def test_reset_returns_to_idle_and_allows_new_scan():
    cameras = FakeCameras({0: ["token-1"]})
    api = FakeApi(errors=[ValidationError(ErrorCodes.APPLICATION_ERROR, "QR 코드가 만료되었습니다.")])
    scanner = make_scanner(api, cameras)
    scanner.scan()
    assert scanner.state == ScannerState.FAILURE

    scanner.reset()
    assert scanner.state == ScannerState.IDLE
    assert scanner.credential is None

    cameras.devices[0] = ["token-2"]
    assert scanner.scan()["status"] == "ok"
    assert api.calls[-1] == "token-2"


def test_scan_requires_idle():
    scanner = make_scanner(FakeApi(), FakeCameras({0: ["t"]}))
    scanner.scan()
    with pytest.raises(RuntimeError):
        scanner.scan()


def test_retry_only_after_failure():
    scanner = make_scanner(FakeApi(), FakeCameras({0: ["t"]}))
    with pytest.raises(RuntimeError):
        scanner.retry()


def test_camera_handle_raises_when_not_opened():
    cameras = FakeCameras({})
    with pytest.raises(CameraError):
        with CameraHandle(0, cameras):
            pass
    assert cameras.all_released()


def test_enumerate_cameras_opens_each_and_releases():
    cameras = FakeCameras({0: [], 2: []})
    assert enumerate_cameras(cameras, limit=4) == [0, 2]
    assert len(cameras.opened) == 4
    assert cameras.all_released()


@pytest.mark.parametrize("text, expected", [
    ("plain-token", "plain-token"),
    ('{"token": "t1"}', "t1"),
    ('{"credential": " t2 "}', "t2"),
])
def test_parse_credential(text, expected):
    assert parse_credential(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "{not json", '{"lessonId": 1}', '{"token": ""}'])
def test_parse_credential_rejects(text):
    with pytest.raises(ValidationError):
        parse_credential(text)


def test_decoder_error_is_failure_and_releases():
    def broken_decoder(frame):
        raise RuntimeError("detectAndDecode failed")

    cameras = FakeCameras({0: ["frame"]})
    api = FakeApi()
    scanner = ScannerClient(api, camera_opener=cameras, decoder=broken_decoder, camera_limit=2, max_frames=20)

    assert scanner.scan() is None
    assert scanner.state == ScannerState.FAILURE
    assert scanner.error.code == ErrorCodes.DECODE_ERROR
    assert isinstance(scanner.error.__cause__, RuntimeError)
    assert api.calls == []
    assert not scanner.camera_active
    assert cameras.all_released()

    scanner.reset()
    assert scanner.state == ScannerState.IDLE


def test_camera_read_error_is_camera_error():
    class BrokenCapture(FakeCapture):
        def read(self):
            raise OSError("device unplugged")

    opened = []

    def opener(index):
        capture = BrokenCapture(opened=index == 0)
        opened.append(capture)
        return capture

    scanner = ScannerClient(FakeApi(), camera_opener=opener, decoder=decode_text, camera_limit=2, max_frames=20)
    assert scanner.scan() is None
    assert scanner.state == ScannerState.CAMERA_ERROR
    assert scanner.error.code == ErrorCodes.CAMERA_UNAVAILABLE
    assert all(capture.released for capture in opened)


def test_parse_args():
    args = parse_args(["--token", "t", "--camera", "1", "--base-url", "http://localhost:8000"])
    assert args.token == "t"
    assert args.camera == 1
    assert args.base_url == "http://localhost:8000"
    assert parse_args(["--token", "t"]).camera is None
