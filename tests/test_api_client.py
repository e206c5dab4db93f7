import pytest
import requests

from attendance_live.client.api import ApiClient
from attendance_live.client.exceptions import (
    AuthorizationError, TransientError, ValidationError, ErrorCodes,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, json=None, timeout=None):
        self.calls.append((method, url, json, timeout))
        if self.error:
            raise self.error
        return self.response


def make_client(response=None, error=None):
    http = FakeHttp(response, error)
    return ApiClient("token-xyz", base_url="http://api.test/api/v1/", timeout=3, http=http), http


def test_bearer_header_and_url():
    client, http = make_client(FakeResponse(200, {"session": {}, "rows": [], "serverTime": 1}))
    client.get_state("s1")
    assert http.headers["Authorization"] == "Bearer token-xyz"
    assert http.calls == [("GET", "http://api.test/api/v1/session/s1/state", None, 3)]


def test_update_record_uses_wire_names():
    client, http = make_client(FakeResponse(200, {"ok": True, "row": {}}))
    client.update_record("s1", "a", status="EXCUSED", work_summary="조립", grade=None)
    _, url, body, _ = http.calls[0]
    assert url.endswith("/session/update-record")
    assert body == {"sessionId": "s1", "studentId": "a", "status": "EXCUSED", "workSummary": "조립", "grade": None}


def test_start_session_drops_empty_fields():
    client, http = make_client(FakeResponse(200, {"sessionId": "s1", "credential": "c"}))
    client.start_session(class_id=100)
    assert http.calls[0][2] == {"classId": 100}


@pytest.mark.parametrize("status_code, error_cls, code", [
    (401, AuthorizationError, ErrorCodes.UNAUTHORIZED),
    (403, AuthorizationError, ErrorCodes.FORBIDDEN),
    (404, ValidationError, ErrorCodes.NOT_FOUND),
    (409, ValidationError, ErrorCodes.CONFLICT),
    (400, ValidationError, ErrorCodes.INVALID_REQUEST),
    (503, TransientError, ErrorCodes.SERVER_ERROR),
])
def test_status_mapping(status_code, error_cls, code):
    client, _ = make_client(FakeResponse(status_code, {"detail": "실패"}))
    with pytest.raises(error_cls) as exc_info:
        client.get_state("s1")
    assert exc_info.value.code == code
    assert exc_info.value.status_code == status_code
    assert "실패" in str(exc_info.value)


def test_validation_list_message():
    client, _ = make_client(FakeResponse(422, {"detail": [{"loc": ["body", "grade"], "msg": "too big"}]}))
    with pytest.raises(ValidationError) as exc_info:
        client.update_record("s1", "a", grade=9)
    assert "too big" in str(exc_info.value)


def test_network_errors_are_transient():
    client, _ = make_client(error=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(TransientError) as exc_info:
        client.check_in("cred")
    assert exc_info.value.retryable
    assert exc_info.value.code == ErrorCodes.NETWORK_ERROR


def test_timeout_is_transient():
    client, _ = make_client(error=requests.exceptions.Timeout())
    with pytest.raises(TransientError):
        client.end_session("s1")


def test_error_field_in_success_body():
    client, _ = make_client(FakeResponse(200, {"error": "세션 없음"}))
    with pytest.raises(ValidationError) as exc_info:
        client.get_state("s1")
    assert exc_info.value.code == ErrorCodes.APPLICATION_ERROR


def test_check_in_requires_ok_status():
    client, http = make_client(FakeResponse(200, {"status": "pending"}))
    with pytest.raises(ValidationError):
        client.check_in("cred", student_id_hint="a")
    assert http.calls[0][2] == {"credential": "cred", "studentIdHint": "a"}


def test_check_in_ok():
    client, _ = make_client(FakeResponse(200, {"status": "ok", "sessionId": "s1", "attendanceStatus": "PRESENT"}))
    assert client.check_in("cred")["attendanceStatus"] == "PRESENT"
