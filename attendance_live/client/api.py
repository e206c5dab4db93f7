"""출석 세션 REST API 클라이언트 (requests)"""

import logging
from typing import Any, Optional

import requests

from attendance_live.core.config import settings
from attendance_live.client.exceptions import (
    AttendanceClientError, AuthorizationError, ValidationError, TransientError, ErrorCodes,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    401: (AuthorizationError, ErrorCodes.UNAUTHORIZED),
    403: (AuthorizationError, ErrorCodes.FORBIDDEN),
    404: (ValidationError, ErrorCodes.NOT_FOUND),
    409: (ValidationError, ErrorCodes.CONFLICT),
}

_WIRE_FIELDS = {"work_summary": "workSummary"}


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json() or {}
    except ValueError:
        payload = {}
    message = None
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("detail") or payload.get("message")
    if isinstance(message, list):
        # FastAPI 422: [{"loc": [...], "msg": "..."}]
        message = "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in message)
    if not message:
        message = response.text or f"HTTP {response.status_code}"
    return str(message)


class ApiClient:
    """
    출석 세션 API 호출을 담당한다.
    모든 실패는 AuthorizationError / ValidationError / TransientError 중 하나로 올라온다.
    """

    def __init__(self, access_token: str, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 http: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = settings.API_TIMEOUT_SECONDS if timeout is None else timeout
        self.http = http or requests.Session()
        self.http.headers.update({"Authorization": f"Bearer {access_token}"})

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, json=json, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise TransientError(ErrorCodes.NETWORK_ERROR, f"{method} {path}: timed out", cause=exc) from exc
        except requests.exceptions.RequestException as exc:
            raise TransientError(ErrorCodes.NETWORK_ERROR, f"{method} {path}: {exc}", cause=exc) from exc

        if response.status_code >= 500:
            raise TransientError(ErrorCodes.SERVER_ERROR, f"{method} {path}: {_error_message(response)}",
                                 status_code=response.status_code)
        if response.status_code >= 400:
            error_cls, code = _STATUS_CODES.get(response.status_code, (ValidationError, ErrorCodes.INVALID_REQUEST))
            raise error_cls(code, _error_message(response), status_code=response.status_code)
        return response

    def _json(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        response = self._request(method, path, json=json)
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientError(ErrorCodes.SERVER_ERROR, f"{method} {path}: invalid JSON response", cause=exc) from exc
        # 2xx 이지만 본문에 error 필드가 있는 경우도 실패로 취급
        if isinstance(data, dict) and data.get("error"):
            raise ValidationError(ErrorCodes.APPLICATION_ERROR, str(data["error"]), status_code=response.status_code)
        return data

    # --- 멘토 ---

    def start_session(self, class_id: Optional[int] = None, kruzhok_id: Optional[int] = None,
                      title: Optional[str] = None, session_id: Optional[str] = None) -> dict:
        body = {"classId": class_id, "kruzhokId": kruzhok_id, "title": title, "sessionId": session_id}
        return self._json("POST", "/session/start", json={k: v for k, v in body.items() if v is not None})

    def get_state(self, session_id: str) -> dict:
        return self._json("GET", f"/session/{session_id}/state")

    def update_record(self, session_id: str, student_id: str, **fields) -> dict:
        """ fields: status / grade / work_summary / comment 중 바꿀 것만 """
        body = {"sessionId": session_id, "studentId": student_id}
        for name, value in fields.items():
            body[_WIRE_FIELDS.get(name, name)] = value
        return self._json("POST", "/session/update-record", json=body)

    def end_session(self, session_id: str) -> dict:
        return self._json("POST", f"/session/{session_id}/end")

    def rotate_credential(self, session_id: str) -> dict:
        return self._json("GET", f"/session/{session_id}/credential")

    # --- 학생 ---

    def check_in(self, credential: str, student_id_hint: Optional[str] = None) -> dict:
        body = {"credential": credential}
        if student_id_hint:
            body["studentIdHint"] = student_id_hint
        data = self._json("POST", "/session/checkin", json=body)
        if data.get("status") != "ok":
            raise ValidationError(ErrorCodes.APPLICATION_ERROR, f"unexpected check-in response: {data.get('status')}")
        return data


__all__ = ["ApiClient", "AttendanceClientError"]
