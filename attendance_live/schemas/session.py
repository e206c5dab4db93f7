from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from attendance_live.models.attendance_record import AttendanceStatus
from attendance_live.models.lesson_session import SessionStatus


class CamelModel(BaseModel):
    """ JSON 은 camelCase, 파이썬 코드는 snake_case """

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --- 세션 시작 / 예약 ---

class SessionScheduleRequest(CamelModel):
    class_id: int
    title: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class SessionStartRequest(CamelModel):
    class_id: Optional[int] = None
    kruzhok_id: Optional[int] = None
    title: Optional[str] = None
    session_id: Optional[str] = None


class SessionStartResponse(CamelModel):
    session_id: str
    credential: str
    started_at: datetime
    server_time: int = Field(..., description="서버 시각 (epoch ms)")


class SessionInfo(CamelModel):
    id: str
    title: str
    date: datetime
    status: SessionStatus
    class_id: Optional[int] = None
    kruzhok_id: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class SessionEndResponse(CamelModel):
    session_id: str
    status: SessionStatus
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    absent_count: int = 0


class CredentialResponse(CamelModel):
    credential: str
    server_time: int


class CredentialRenderRequest(CamelModel):
    credential: str = Field(..., min_length=1)


# --- 출석부 ---

class RosterStudent(CamelModel):
    uid: str
    name: Optional[str] = None
    email: Optional[str] = None


class RosterRow(CamelModel):
    student_id: str
    student: RosterStudent
    status: AttendanceStatus
    grade: Optional[int] = None
    work_summary: Optional[str] = None
    comment: Optional[str] = None
    is_enrolled: bool
    marked_at: Optional[datetime] = None


class SessionStateResponse(CamelModel):
    session: SessionInfo
    rows: List[RosterRow]
    server_time: int


# --- 체크인 ---

class CheckInRequest(CamelModel):
    credential: str = Field(..., min_length=1)
    # 클라이언트가 보낸 학생 id 는 참고용일 뿐, 실제 신원은 인증 토큰에서 가져옴
    student_id_hint: Optional[str] = None


class CheckInResponse(CamelModel):
    status: str = "ok"
    session_id: str
    attendance_status: AttendanceStatus
    already_marked: bool = False


# --- 멘토 수정 ---

class RecordUpdateRequest(CamelModel):
    session_id: str
    student_id: str
    status: Optional[AttendanceStatus] = None
    grade: Optional[int] = Field(None, ge=1, le=5)
    work_summary: Optional[str] = Field(None, max_length=2000)
    comment: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def status_not_null(self):
        if "status" in self.model_fields_set and self.status is None:
            raise ValueError("status 는 null 로 지울 수 없습니다.")
        return self

    def changed_fields(self) -> dict:
        """ 요청에 실제로 포함된 필드만 (명시적 null 은 값 삭제로 취급) """
        editable = {"status", "grade", "work_summary", "comment"}
        return {name: getattr(self, name) for name in self.model_fields_set & editable}


class RecordUpdateResponse(CamelModel):
    ok: bool = True
    row: RosterRow
