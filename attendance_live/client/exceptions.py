"""스캐너/멘토 화면 클라이언트의 예외 정의"""


class AttendanceClientError(Exception):
    """클라이언트 예외 기본 클래스."""

    retryable = False

    def __init__(self, code: str, message: str, status_code: int | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class AuthorizationError(AttendanceClientError):
    """401/403. 재시도하지 않고 사용자에게 보여준다."""


class ValidationError(AttendanceClientError):
    """잘못되었거나 만료된 크리덴셜, 없는 세션 등. 해당 작업은 실패로 끝난다."""


class TransientError(AttendanceClientError):
    """연결 실패, 타임아웃, 5xx. 재시도(스캐너) 또는 재동기화(출석부)로 복구한다."""

    retryable = True


class CameraError(AttendanceClientError):
    """카메라 권한/장치 오류. 스캔 실패와 구분되는 별도 종료 상태."""


class ErrorCodes:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    CONFLICT = "CONFLICT"
    APPLICATION_ERROR = "APPLICATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    CAMERA_UNAVAILABLE = "CAMERA_UNAVAILABLE"
    NO_QR_FOUND = "NO_QR_FOUND"
    DECODE_ERROR = "DECODE_ERROR"
