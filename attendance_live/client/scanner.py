"""
학생 기기용 QR 스캐너.

IDLE → ENUMERATING_CAMERAS → STREAMING → DECODED → SUBMITTING → SUCCESS | FAILURE
카메라를 열 수 없으면 CAMERA_ERROR 로 끝나며, 세 종료 상태 모두 reset() 으로 IDLE 로 돌아간다.
카메라는 CameraHandle 로만 열고, 스트리밍이 어떤 경로로 끝나든 반납한다.
"""

import argparse
import enum
import json
import logging
import os
import threading
from typing import Callable, Optional

import cv2

from attendance_live.core.config import settings
from attendance_live.client.api import ApiClient
from attendance_live.client.exceptions import (
    AttendanceClientError, CameraError, ValidationError, ErrorCodes,
)

logger = logging.getLogger(__name__)

# JSON 형태 QR 에서 서버 크리덴셜을 담는 키 (구버전 앱 호환)
CREDENTIAL_KEYS = ("qrToken", "token", "credential")
MAX_EMPTY_FRAMES = 30
MAX_SUBMIT_RETRIES = 3


class ScannerState(str, enum.Enum):
    IDLE = "IDLE"
    ENUMERATING_CAMERAS = "ENUMERATING_CAMERAS"
    STREAMING = "STREAMING"
    DECODED = "DECODED"
    SUBMITTING = "SUBMITTING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CAMERA_ERROR = "CAMERA_ERROR"


TERMINAL_STATES = (ScannerState.SUCCESS, ScannerState.FAILURE, ScannerState.CAMERA_ERROR)


def open_capture(index: int):
    return cv2.VideoCapture(index)


def enumerate_cameras(opener: Callable = open_capture, limit: Optional[int] = None) -> list[int]:
    """ 0번부터 차례로 열어보고 열리는 카메라 인덱스만 반환 (확인 후 바로 반납) """
    limit = settings.CAMERA_SCAN_LIMIT if limit is None else limit
    found = []
    for index in range(limit):
        capture = opener(index)
        try:
            if capture is not None and capture.isOpened():
                found.append(index)
        finally:
            if capture is not None:
                capture.release()
    return found


class CameraHandle:
    """ with 블록을 벗어나면 성공/실패/취소와 관계없이 카메라를 반납한다 """

    def __init__(self, index: int, opener: Callable = open_capture):
        self.index = index
        self._opener = opener
        self.capture = None

    def __enter__(self):
        capture = self._opener(self.index)
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraError(ErrorCodes.CAMERA_UNAVAILABLE, f"카메라 {self.index} 를 열 수 없습니다.")
        self.capture = capture
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    @property
    def active(self) -> bool:
        return self.capture is not None

    def read(self):
        ok, frame = self.capture.read()
        return frame if ok else None

    def release(self):
        if self.capture is not None:
            self.capture.release()
            self.capture = None


class QrDecoder:
    def __init__(self):
        self._detector = cv2.QRCodeDetector()

    def __call__(self, frame) -> Optional[str]:
        data, _points, _ = self._detector.detectAndDecode(frame)
        return data or None


def parse_credential(text: str) -> str:
    """
    스캔된 문자열을 서버에 보낼 크리덴셜 하나로 정규화한다.
    - 그냥 토큰 문자열이면 그대로
    - JSON 이면 qrToken / token / credential 키의 값
    - 서버 크리덴셜이 없는 JSON(기기에서 직접 만든 구버전 QR)은 지원하지 않음
    """
    raw = (text or "").strip()
    if not raw:
        raise ValidationError(ErrorCodes.INVALID_CREDENTIAL, "빈 QR 코드입니다.")
    if not raw.startswith("{"):
        return raw
    try:
        envelope = json.loads(raw)
    except ValueError:
        raise ValidationError(ErrorCodes.INVALID_CREDENTIAL, "QR 코드를 읽을 수 없습니다.")
    if isinstance(envelope, dict):
        for key in CREDENTIAL_KEYS:
            value = envelope.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    raise ValidationError(ErrorCodes.INVALID_CREDENTIAL, "출석용 QR 코드가 아닙니다.")


class ScannerClient:

    def __init__(self, api, camera_opener: Callable = open_capture, decoder: Optional[Callable] = None,
                 camera_limit: Optional[int] = None, max_frames: Optional[int] = None,
                 on_state: Optional[Callable[[ScannerState], None]] = None):
        self.api = api
        self._opener = camera_opener
        self._decoder = decoder
        self._camera_limit = camera_limit
        self._max_frames = max_frames
        self._on_state = on_state
        self._close_requested = threading.Event()
        self._camera: Optional[CameraHandle] = None

        self.state = ScannerState.IDLE
        self.cameras: list[int] = []
        self.credential: Optional[str] = None
        self.result: Optional[dict] = None
        self.error: Optional[AttendanceClientError] = None

    @property
    def camera_active(self) -> bool:
        return self._camera is not None and self._camera.active

    def _set_state(self, state: ScannerState):
        self.state = state
        logger.info(f"Scanner state → {state.value}")
        if self._on_state:
            self._on_state(state)

    def _fail(self, state: ScannerState, error: AttendanceClientError):
        self.error = error
        self._set_state(state)

    def scan(self, camera_index: Optional[int] = None) -> Optional[dict]:
        """ 카메라를 열어 QR 을 찾고 체크인까지 진행. close() 로 취소되면 None """
        if self.state != ScannerState.IDLE:
            raise RuntimeError(f"scan() requires IDLE state (current: {self.state.value})")
        self._close_requested.clear()

        self._set_state(ScannerState.ENUMERATING_CAMERAS)
        try:
            self.cameras = enumerate_cameras(self._opener, self._camera_limit)
        except Exception as exc:
            self._fail(ScannerState.CAMERA_ERROR,
                       CameraError(ErrorCodes.CAMERA_UNAVAILABLE, f"카메라 목록을 가져올 수 없습니다: {exc}", cause=exc))
            return None
        if not self.cameras:
            self._fail(ScannerState.CAMERA_ERROR, CameraError(ErrorCodes.CAMERA_UNAVAILABLE, "사용 가능한 카메라가 없습니다."))
            return None
        index = camera_index if camera_index in self.cameras else self.cameras[0]

        try:
            text = self._stream(index)
        except CameraError as exc:
            self._fail(ScannerState.CAMERA_ERROR, exc)
            return None
        except ValidationError as exc:
            self._fail(ScannerState.FAILURE, exc)
            return None
        if text is None:
            if self._close_requested.is_set():
                self._set_state(ScannerState.IDLE)
            else:
                self._fail(ScannerState.FAILURE, ValidationError(ErrorCodes.NO_QR_FOUND, "QR 코드를 찾지 못했습니다."))
            return None

        self._set_state(ScannerState.DECODED)
        try:
            self.credential = parse_credential(text)
        except ValidationError as exc:
            self._fail(ScannerState.FAILURE, exc)
            return None
        return self.submit()

    def _stream(self, index: int) -> Optional[str]:
        decoder = self._decoder or QrDecoder()
        with CameraHandle(index, self._opener) as camera:
            self._camera = camera
            self._set_state(ScannerState.STREAMING)
            try:
                frames = 0
                empty = 0
                while not self._close_requested.is_set():
                    if self._max_frames is not None and frames >= self._max_frames:
                        return None
                    try:
                        frame = camera.read()
                    except Exception as exc:
                        raise CameraError(ErrorCodes.CAMERA_UNAVAILABLE, f"카메라 영상을 읽을 수 없습니다: {exc}",
                                          cause=exc) from exc
                    frames += 1
                    if frame is None:
                        empty += 1
                        if empty >= MAX_EMPTY_FRAMES:
                            raise CameraError(ErrorCodes.CAMERA_UNAVAILABLE, "카메라 영상을 받을 수 없습니다.")
                        continue
                    empty = 0
                    try:
                        text = decoder(frame)
                    except Exception as exc:
                        # cv2.error 등. 스캔 실패로 끝내고 카메라는 with 블록에서 반납
                        raise ValidationError(ErrorCodes.DECODE_ERROR, f"QR 코드를 해석할 수 없습니다: {exc}",
                                              cause=exc) from exc
                    if text:
                        return text
                return None
            finally:
                self._camera = None

    def submit(self) -> Optional[dict]:
        self._set_state(ScannerState.SUBMITTING)
        try:
            self.result = self.api.check_in(self.credential)
        except AttendanceClientError as exc:
            logger.warning(f"Check-in failed: {exc}")
            self._fail(ScannerState.FAILURE, exc)
            return None
        self.error = None
        self._set_state(ScannerState.SUCCESS)
        return self.result

    def retry(self) -> Optional[dict]:
        """ 카메라를 다시 열지 않고 이미 읽은 크리덴셜로 재전송 """
        if self.state != ScannerState.FAILURE or not self.credential:
            raise RuntimeError("retry() is only possible after a failed submission")
        return self.submit()

    def reset(self):
        if self.state not in TERMINAL_STATES:
            raise RuntimeError(f"reset() is only possible from a terminal state (current: {self.state.value})")
        self.credential = None
        self.result = None
        self.error = None
        self._set_state(ScannerState.IDLE)

    def close(self):
        # 스트리밍 루프가 다음 프레임에서 빠져나오면서 카메라를 반납함
        self._close_requested.set()


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Scan a lesson QR code and check in")
    p.add_argument("--token", default=os.getenv("ATTENDANCE_TOKEN"), help="Student access token (default: $ATTENDANCE_TOKEN)")
    p.add_argument("--base-url", default=None, help="API base URL (default: API_BASE_URL setting)")
    p.add_argument("--camera", type=int, default=None, help="Camera index (default: first available)")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    if not args.token:
        raise SystemExit("student access token is required (--token or $ATTENDANCE_TOKEN)")
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    scanner = ScannerClient(ApiClient(args.token, base_url=args.base_url))
    try:
        result = scanner.scan(args.camera)
        for _ in range(MAX_SUBMIT_RETRIES):
            if not (scanner.state == ScannerState.FAILURE and scanner.error.retryable and scanner.credential):
                break
            logger.info("Retrying check-in")
            result = scanner.retry()
    except KeyboardInterrupt:
        scanner.close()
        raise SystemExit(130)

    if scanner.state != ScannerState.SUCCESS:
        raise SystemExit(f"check-in failed: {scanner.error}")
    print(f"checked in: {result['attendanceStatus']}")


if __name__ == "__main__":
    main()
