import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from attendance_live.core.config import settings
from attendance_live.core.locks import row_locks
from attendance_live.models.attendance_record import AttendanceRecord, AttendanceStatus
from attendance_live.models.enrollment import ClassEnrollment
from attendance_live.models.lesson_session import LessonSession, SessionStatus
from attendance_live.schemas.session import SessionScheduleRequest, SessionStartRequest, SessionEndResponse
from attendance_live.services.access import get_owned_session, resolve_teaching_target
from attendance_live.services.credential_service import IssuedCredential, issue_credential, revoke_credential
from attendance_live.utils import clock

logger = logging.getLogger(__name__)


class StartedSession(NamedTuple):
    session: LessonSession
    issued: IssuedCredential


def schedule_session(db: Session, mentor_id: int, req: SessionScheduleRequest) -> LessonSession:
    club_class, kruzhok = resolve_teaching_target(db, mentor_id, req.class_id, None)
    session = LessonSession(
        mentor_id=mentor_id,
        class_id=club_class.id,
        kruzhok_id=kruzhok.id,
        title=req.title or club_class.name,
        status=SessionStatus.SCHEDULED,
        scheduled_at=req.scheduled_at or clock.utcnow(),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info(f"Session scheduled: session={session.id} class={club_class.id} mentor={mentor_id}")
    return session


def _find_scheduled_today(db: Session, mentor_id: int, class_id: int):
    today = clock.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)
    return (
        db.query(LessonSession)
        .filter(
            LessonSession.class_id == class_id,
            LessonSession.mentor_id == mentor_id,
            LessonSession.status == SessionStatus.SCHEDULED,
            LessonSession.scheduled_at >= today,
            LessonSession.scheduled_at < tomorrow,
        )
        .order_by(LessonSession.scheduled_at)
        .first()
    )


def _resolve_session_to_start(db: Session, mentor_id: int, req: SessionStartRequest) -> LessonSession:
    if req.session_id:
        session = get_owned_session(db, req.session_id, mentor_id)
        if session.status != SessionStatus.SCHEDULED:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="예약 상태의 세션만 시작할 수 있습니다.")
        # 예약 이후 담당이 바뀌었을 수도 있으므로 다시 확인
        resolve_teaching_target(db, mentor_id, session.class_id, session.kruzhok_id)
        return session

    club_class, kruzhok = resolve_teaching_target(db, mentor_id, req.class_id, req.kruzhok_id)

    if club_class is not None:
        live = db.query(LessonSession).filter(
            LessonSession.class_id == club_class.id,
            LessonSession.status == SessionStatus.LIVE,
        ).first()
        if live:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="이 반은 이미 수업이 진행 중입니다.")
        scheduled = _find_scheduled_today(db, mentor_id, club_class.id)
        if scheduled:
            return scheduled

    # 예약된 수업이 없으면 즉석(ad-hoc) 세션 생성
    session = LessonSession(
        mentor_id=mentor_id,
        class_id=club_class.id if club_class else None,
        kruzhok_id=kruzhok.id,
        title=req.title or settings.DEFAULT_SESSION_TITLE,
        status=SessionStatus.SCHEDULED,
        scheduled_at=clock.utcnow(),
    )
    db.add(session)
    return session


def seed_roster(db: Session, session: LessonSession) -> int:
    """ 현재 수강 중인 학생마다 ABSENT 행을 만듭니다. 이미 있는 행은 건드리지 않음 """
    if session.class_id is None:
        return 0
    enrolled_uids = [
        row.student_uid
        for row in db.query(ClassEnrollment.student_uid).filter(
            ClassEnrollment.class_id == session.class_id,
            ClassEnrollment.status == "active",
        ).order_by(ClassEnrollment.id)
    ]
    existing = {
        row.student_uid
        for row in db.query(AttendanceRecord.student_uid).filter(AttendanceRecord.session_id == session.id)
    }
    created = 0
    for uid in enrolled_uids:
        if uid in existing:
            continue
        db.add(AttendanceRecord(
            session_id=session.id,
            student_uid=uid,
            status=AttendanceStatus.ABSENT,
            is_enrolled=True,
        ))
        created += 1
    return created


def start_session(db: Session, mentor_id: int, req: SessionStartRequest) -> StartedSession:
    session = _resolve_session_to_start(db, mentor_id, req)
    session.status = SessionStatus.LIVE
    session.started_at = clock.utcnow()
    if req.title and not req.session_id:
        session.title = req.title
    db.flush()
    seeded = seed_roster(db, session)
    db.commit()
    db.refresh(session)
    logger.info(f"Session started: session={session.id} mentor={mentor_id} seeded_rows={seeded}")

    issued = issue_credential(db, session.id, mentor_id, session.class_id, session.kruzhok_id)
    return StartedSession(session=session, issued=issued)


def _finish(db: Session, session: LessonSession, ended_at: datetime) -> int:
    # 시작 이후에 등록된 학생도 결석으로 남김
    seed_roster(db, session)
    session.status = SessionStatus.ENDED
    session.ended_at = ended_at
    if session.started_at:
        elapsed = (ended_at - session.started_at).total_seconds() / 60
        session.duration_minutes = max(1, round(elapsed))
    revoke_credential(session)
    db.commit()
    db.refresh(session)
    row_locks.discard_session(session.id)
    return absent_count(db, session.id)


def absent_count(db: Session, session_id: str) -> int:
    return db.query(AttendanceRecord).filter(
        AttendanceRecord.session_id == session_id,
        AttendanceRecord.status == AttendanceStatus.ABSENT,
    ).count()


def end_session(db: Session, mentor_id: int, session_id: str) -> SessionEndResponse:
    session = get_owned_session(db, session_id, mentor_id)
    if session.status == SessionStatus.SCHEDULED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="시작하지 않은 세션은 종료할 수 없습니다.")

    expire_if_overdue(db, session)
    if session.status == SessionStatus.ENDED:
        # 이미 종료된 세션: no-op
        absent = absent_count(db, session.id)
    else:
        absent = _finish(db, session, clock.utcnow())
        logger.info(f"Session ended: session={session.id} mentor={mentor_id} absent={absent}")

    return SessionEndResponse(
        session_id=session.id,
        status=session.status,
        ended_at=session.ended_at,
        duration_minutes=session.duration_minutes,
        absent_count=absent,
    )


def expire_if_overdue(db: Session, session: LessonSession) -> bool:
    """ 최대 수업 시간을 넘긴 LIVE 세션은 접근 시점에 자동 종료 """
    limit = settings.SESSION_MAX_DURATION_MINUTES
    if limit <= 0 or session.status != SessionStatus.LIVE or session.started_at is None:
        return False
    deadline = session.started_at + timedelta(minutes=limit)
    if clock.utcnow() < deadline:
        return False
    _finish(db, session, deadline)
    logger.info(f"Session ended by timeout: session={session.id} limit={limit}min")
    return True
