from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from attendance_live.models.club_class import ClubClass
from attendance_live.models.kruzhok import Kruzhok
from attendance_live.models.lesson_session import LessonSession


def resolve_teaching_target(
    db: Session, mentor_id: int, class_id: Optional[int], kruzhok_id: Optional[int]
) -> Tuple[Optional[ClubClass], Kruzhok]:
    """
    (classId, kruzhokId) 조합을 검증하고 멘토가 가르칠 수 있는 대상인지 확인합니다.
    - 존재하지 않거나 짝이 맞지 않으면 404
    - 멘토 본인의 반/동아리가 아니면 403
    """
    if class_id is None and kruzhok_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="classId 또는 kruzhokId 가 필요합니다.")

    club_class = None
    if class_id is not None:
        club_class = db.query(ClubClass).filter(ClubClass.id == class_id).first()
        if not club_class:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="해당 반을 찾을 수 없습니다.")
        if kruzhok_id is not None and club_class.kruzhok_id != kruzhok_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="반과 동아리 정보가 일치하지 않습니다.")
        kruzhok_id = club_class.kruzhok_id

    kruzhok = db.query(Kruzhok).filter(Kruzhok.id == kruzhok_id).first()
    if not kruzhok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="해당 동아리를 찾을 수 없습니다.")

    is_owner = kruzhok.owner_id == mentor_id
    if club_class is not None:
        allowed = club_class.mentor_id == mentor_id or is_owner
    else:
        allowed = is_owner
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="본인이 담당하는 반이 아닙니다.")
    return club_class, kruzhok


def get_owned_session(db: Session, session_id: str, mentor_id: int) -> LessonSession:
    session = db.query(LessonSession).filter(LessonSession.id == session_id).first()
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="세션을 찾을 수 없습니다.")
    if session.mentor_id != mentor_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="본인이 시작한 세션이 아닙니다.")
    return session
