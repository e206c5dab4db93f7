from fastapi import APIRouter, Depends, Body, HTTPException, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from attendance_live.dependencies.auth import get_current_mentor, get_current_mentor_id, get_current_student
from attendance_live.dependencies.db import get_db
from attendance_live.models.student import Student
from attendance_live.schemas.session import (
    SessionScheduleRequest, SessionInfo,
    SessionStartRequest, SessionStartResponse,
    SessionStateResponse, SessionEndResponse,
    CheckInRequest, CheckInResponse,
    RecordUpdateRequest, RecordUpdateResponse,
    CredentialResponse, CredentialRenderRequest,
)
from attendance_live.services import credential_service, lifecycle_service, roster_service
from attendance_live.services.access import get_owned_session
from attendance_live.services.export_service import XLSX_MEDIA_TYPE, build_roster_workbook
from attendance_live.services.qr_service import render_credential_png

router = APIRouter()


# =========================
# 멘토: 수업 세션 라이프사이클
# =========================

@router.post("/schedule", response_model=SessionInfo, summary="수업 예약",
             dependencies=[Depends(get_current_mentor)])
def schedule_lesson(
    req: SessionScheduleRequest = Body(...),
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    담당 반의 수업을 SCHEDULED 상태로 예약합니다.
    같은 날 /start 를 호출하면 예약된 세션이 시작됩니다.
    """
    session = lifecycle_service.schedule_session(db, mentor_id, req)
    return roster_service.to_session_info(session)


@router.post("/start", response_model=SessionStartResponse, summary="수업 시작 및 QR 크리덴셜 발급",
             dependencies=[Depends(get_current_mentor)])
def start_lesson(
    req: SessionStartRequest = Body(...),
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    수업을 LIVE 로 전환하고, 수강생 전원을 ABSENT 로 출석부에 올린 뒤 QR 크리덴셜을 발급합니다.
    - 본인 담당 반/동아리가 아니면 403
    - 반/동아리가 없거나 짝이 맞지 않으면 404
    - 이미 진행 중인 수업이 있으면 409
    """
    started = lifecycle_service.start_session(db, mentor_id, req)
    return SessionStartResponse(
        session_id=started.session.id,
        credential=started.issued.credential,
        started_at=started.issued.started_at,
        server_time=started.issued.server_time,
    )


@router.post("/{session_id}/end", response_model=SessionEndResponse, summary="수업 종료",
             dependencies=[Depends(get_current_mentor)])
def end_lesson(
    session_id: str,
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    수업을 종료합니다. 이미 종료된 수업이면 아무 것도 하지 않습니다.
    종료 후에는 기존 QR 크리덴셜로 체크인할 수 없습니다.
    """
    return lifecycle_service.end_session(db, mentor_id, session_id)


@router.get("/{session_id}/credential", response_model=CredentialResponse, summary="QR 크리덴셜 재발급",
            dependencies=[Depends(get_current_mentor)])
def rotate_credential(
    session_id: str,
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    진행 중인 수업의 QR 크리덴셜을 새로 발급합니다. 이전 크리덴셜은 바로 무효가 됩니다.
    """
    session = get_owned_session(db, session_id, mentor_id)
    lifecycle_service.expire_if_overdue(db, session)
    issued = credential_service.issue_credential(db, session.id, mentor_id, session.class_id, session.kruzhok_id)
    return CredentialResponse(credential=issued.credential, server_time=issued.server_time)


@router.post("/{session_id}/credential/qr", summary="QR 이미지(PNG) 생성",
             response_class=Response, dependencies=[Depends(get_current_mentor)])
def render_credential_qr(
    session_id: str,
    req: CredentialRenderRequest = Body(...),
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    현재 유효한 크리덴셜을 학생들이 스캔할 수 있는 QR 이미지로 만들어 줍니다.
    """
    session = get_owned_session(db, session_id, mentor_id)
    claims = credential_service.decode_credential(req.credential)
    if claims.get("sid") != session.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="이 세션의 QR 크리덴셜이 아닙니다.")
    credential_service.ensure_credential_current(session, claims)
    return Response(content=render_credential_png(req.credential), media_type="image/png")


# =========================
# 멘토: 실시간 출석부
# =========================

@router.get("/{session_id}/state", response_model=SessionStateResponse, summary="실시간 출석부 조회",
            dependencies=[Depends(get_current_mentor)])
def get_lesson_state(
    session_id: str,
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    세션 정보와 전체 출석부를 반환합니다. (멘토 화면이 5초마다 폴링)
    """
    return roster_service.get_session_state(db, session_id, mentor_id)


@router.post("/update-record", response_model=RecordUpdateResponse, summary="출석/점수/활동 요약 수정",
             dependencies=[Depends(get_current_mentor)])
def update_attendance_record(
    req: RecordUpdateRequest = Body(...),
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    """
    멘토가 학생 한 명의 status / grade / workSummary / comment 를 수정합니다.
    - 요청에 포함된 필드만 바뀌며, 하나라도 잘못된 값이면 전체 요청이 거절됩니다 (422)
    - 진행 중인 세션이 아니면 404
    """
    return roster_service.update_record(db, mentor_id, req)


@router.get("/{session_id}/export", summary="출석부 엑셀 내보내기",
            dependencies=[Depends(get_current_mentor)])
def export_lesson(
    session_id: str,
    db: Session = Depends(get_db),
    mentor_id: int = Depends(get_current_mentor_id)
):
    book_io = build_roster_workbook(db, session_id, mentor_id)
    return StreamingResponse(
        book_io,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=lesson-{session_id}.xlsx"},
    )


# =========================
# 학생: QR 체크인
# =========================

@router.post("/checkin", response_model=CheckInResponse, summary="QR 출석 체크")
def check_in(
    req: CheckInRequest = Body(...),
    db: Session = Depends(get_db),
    student: Student = Depends(get_current_student)
):
    """
    학생이 스캔한 QR 크리덴셜로 출석합니다.
    학생 신원은 요청 본문이 아니라 인증 토큰에서 결정됩니다.
    """
    return roster_service.check_in(db, student, req)
