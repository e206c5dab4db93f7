import logging
import secrets
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

import jwt
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from attendance_live.core.config import settings
from attendance_live.models.lesson_session import LessonSession, SessionStatus
from attendance_live.services.access import get_owned_session, resolve_teaching_target
from attendance_live.utils import clock

logger = logging.getLogger(__name__)

CREDENTIAL_ALGORITHM = "HS256"


class IssuedCredential(NamedTuple):
    credential: str
    started_at: datetime
    server_time: int


def mint_credential(session: LessonSession) -> str:
    """
    세션에 묶인 QR 크리덴셜을 새로 만들고 세션의 현재 jti 를 교체합니다.
    이전에 발급된 크리덴셜은 jti 가 달라지므로 즉시 무효가 됩니다. (commit 은 호출자가)
    """
    now = clock.utcnow()
    jti = secrets.token_urlsafe(16)
    payload = {
        "sid": session.id,
        "mid": session.mentor_id,
        "jti": jti,
        "iat": now,
    }
    if settings.CREDENTIAL_TTL_SECONDS > 0:
        payload["exp"] = now + timedelta(seconds=settings.CREDENTIAL_TTL_SECONDS)

    session.credential_jti = jti
    session.credential_issued_at = now
    return jwt.encode(payload, settings.CREDENTIAL_SECRET_KEY, algorithm=CREDENTIAL_ALGORITHM)


def revoke_credential(session: LessonSession):
    session.credential_jti = None


def issue_credential(
    db: Session,
    session_id: str,
    mentor_id: int,
    class_id: Optional[int],
    kruzhok_id: Optional[int],
) -> IssuedCredential:
    session = get_owned_session(db, session_id, mentor_id)
    club_class, kruzhok = resolve_teaching_target(db, mentor_id, class_id, kruzhok_id)
    session_class_id = club_class.id if club_class else None
    if session.class_id != session_class_id or session.kruzhok_id != kruzhok.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="세션과 반/동아리 정보가 일치하지 않습니다.")
    if session.status != SessionStatus.LIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="진행 중인 세션이 아닙니다.")

    credential = mint_credential(session)
    db.commit()
    db.refresh(session)
    logger.info(f"Credential issued: session={session.id} mentor={mentor_id}")
    return IssuedCredential(credential=credential, started_at=session.started_at, server_time=clock.epoch_ms())


def decode_credential(credential: str) -> dict:
    try:
        claims = jwt.decode(
            credential,
            settings.CREDENTIAL_SECRET_KEY,
            algorithms=[CREDENTIAL_ALGORITHM],
            options={"require": ["sid", "jti", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Rejected check-in credential: expired")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="QR 코드가 만료되었습니다.")
    except jwt.PyJWTError:
        logger.warning("Rejected check-in credential: invalid signature or payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="유효하지 않은 QR 코드입니다.")
    return claims


def load_credential_session(db: Session, claims: dict) -> LessonSession:
    session = db.query(LessonSession).filter(LessonSession.id == claims["sid"]).first()
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="세션을 찾을 수 없습니다.")
    return session


def ensure_credential_current(session: LessonSession, claims: dict):
    """ 종료된 세션이나 교체된 크리덴셜은 재시도 불가능한 거절 """
    if session.status != SessionStatus.LIVE:
        logger.warning(f"Rejected check-in credential: session={session.id} status={session.status.value}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="진행 중인 수업이 아닙니다.")
    if not session.credential_jti or not secrets.compare_digest(session.credential_jti, str(claims["jti"])):
        logger.warning(f"Rejected check-in credential: session={session.id} superseded")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="QR 코드가 만료되었습니다.")
