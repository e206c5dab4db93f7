import logging
from datetime import timedelta
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_live.core.config import settings
from attendance_live.core.locks import row_locks
from attendance_live.models.attendance_record import AttendanceRecord, AttendanceStatus
from attendance_live.models.enrollment import ClassEnrollment
from attendance_live.models.lesson_session import LessonSession, SessionStatus
from attendance_live.models.student import Student
from attendance_live.schemas.session import (
    SessionInfo, SessionStateResponse, RosterRow, RosterStudent,
    CheckInRequest, CheckInResponse,
    RecordUpdateRequest, RecordUpdateResponse,
)
from attendance_live.services import credential_service
from attendance_live.services.access import get_owned_session
from attendance_live.services.lifecycle_service import expire_if_overdue
from attendance_live.utils import clock

logger = logging.getLogger(__name__)


def to_session_info(session: LessonSession) -> SessionInfo:
    return SessionInfo(
        id=session.id,
        title=session.title,
        date=session.started_at or session.scheduled_at,
        status=session.status,
        class_id=session.class_id,
        kruzhok_id=session.kruzhok_id,
        started_at=session.started_at,
        ended_at=session.ended_at,
    )


def to_roster_row(record: AttendanceRecord) -> RosterRow:
    student = record.student
    return RosterRow(
        student_id=record.student_uid,
        student=RosterStudent(
            uid=record.student_uid,
            name=student.name if student else None,
            email=student.email if student else None,
        ),
        status=record.status,
        grade=record.grade,
        work_summary=record.work_summary,
        comment=record.comment,
        is_enrolled=record.is_enrolled,
        marked_at=record.marked_at,
    )


def get_session_state(db: Session, session_id: str, mentor_id: int) -> SessionStateResponse:
    """
    세션 전체 출석부 스냅샷. 항상 전체 행을 돌려주므로 폴링하는 쪽은 상태를 들고 있을 필요가 없음
    """
    session = get_owned_session(db, session_id, mentor_id)
    expire_if_overdue(db, session)
    records = (
        db.query(AttendanceRecord)
        .filter(AttendanceRecord.session_id == session.id)
        .order_by(AttendanceRecord.is_enrolled.desc(), AttendanceRecord.id)
        .all()
    )
    return SessionStateResponse(
        session=to_session_info(session),
        rows=[to_roster_row(r) for r in records],
        server_time=clock.epoch_ms(),
    )


def _is_enrolled(db: Session, session: LessonSession, student_uid: str) -> bool:
    if session.class_id is None:
        return False
    return db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == session.class_id,
        ClassEnrollment.student_uid == student_uid,
        ClassEnrollment.status == "active",
    ).first() is not None


def _find_record(db: Session, session_id: str, student_uid: str) -> Optional[AttendanceRecord]:
    return (
        db.query(AttendanceRecord)
        .filter(AttendanceRecord.session_id == session_id, AttendanceRecord.student_uid == student_uid)
        .populate_existing()
        .first()
    )


def _get_or_create_record(db: Session, session: LessonSession, student_uid: str) -> tuple[AttendanceRecord, bool]:
    record = _find_record(db, session.id, student_uid)
    if record:
        return record, False
    record = AttendanceRecord(
        session_id=session.id,
        student_uid=student_uid,
        status=AttendanceStatus.ABSENT,
        is_enrolled=_is_enrolled(db, session, student_uid),
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError:
        # 다른 프로세스가 먼저 행을 만든 경우 → 그 행을 갱신
        db.rollback()
        record = _find_record(db, session.id, student_uid)
        if record is None:
            raise
        return record, False
    return record, True


def _check_in_status(session: LessonSession, now) -> AttendanceStatus:
    threshold = settings.LATE_THRESHOLD_MINUTES
    if threshold > 0 and session.started_at and now - session.started_at > timedelta(minutes=threshold):
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT


def check_in(db: Session, student: Student, req: CheckInRequest) -> CheckInResponse:
    """
    QR 크리덴셜로 학생 본인 출석 체크.
    - 신원은 인증 토큰의 학생으로만 결정 (studentIdHint 는 무시)
    - ABSENT 인 경우에만 PRESENT(또는 LATE)로 바꾸고, 멘토가 정한 LATE/EXCUSED 등은 유지
    - 반복 체크인은 markedAt 만 갱신
    """
    claims = credential_service.decode_credential(req.credential)
    session = credential_service.load_credential_session(db, claims)
    expire_if_overdue(db, session)
    credential_service.ensure_credential_current(session, claims)

    if req.student_id_hint and req.student_id_hint != student.uid:
        logger.warning(f"Check-in hint mismatch ignored: session={session.id} student={student.uid}")

    with row_locks.hold(session.id, student.uid):
        # 락을 잡는 사이 세션이 종료되었을 수 있음
        db.refresh(session)
        credential_service.ensure_credential_current(session, claims)

        now = clock.utcnow()
        record, created = _get_or_create_record(db, session, student.uid)
        already_marked = not created and record.status != AttendanceStatus.ABSENT
        if record.status == AttendanceStatus.ABSENT:
            record.status = _check_in_status(session, now)
        record.marked_at = now
        db.commit()
        db.refresh(record)

    logger.info(
        f"Check-in: session={session.id} student={student.uid} status={record.status.value} "
        f"guest={not record.is_enrolled}"
    )
    return CheckInResponse(
        session_id=session.id,
        attendance_status=record.status,
        already_marked=already_marked,
    )


def update_record(db: Session, mentor_id: int, req: RecordUpdateRequest) -> RecordUpdateResponse:
    """
    멘토의 출석/점수/활동 요약 수정. 요청에 포함된 필드만 한 번에 반영 (부분 반영 없음)
    """
    session = get_owned_session(db, req.session_id, mentor_id)
    expire_if_overdue(db, session)
    if session.status != SessionStatus.LIVE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="진행 중인 세션을 찾을 수 없습니다.")

    student = db.query(Student).filter(Student.uid == req.student_id).first()
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="학생 정보를 찾을 수 없습니다.")

    fields = req.changed_fields()
    with row_locks.hold(session.id, student.uid):
        db.refresh(session)
        if session.status != SessionStatus.LIVE:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="진행 중인 세션을 찾을 수 없습니다.")

        record, _ = _get_or_create_record(db, session, student.uid)
        for name, value in fields.items():
            setattr(record, name, value)
        record.marked_at = clock.utcnow()
        record.marked_by_mentor_id = mentor_id
        db.commit()
        db.refresh(record)

    logger.info(f"Record updated: session={session.id} student={student.uid} fields={sorted(fields)}")
    return RecordUpdateResponse(row=to_roster_row(record))
