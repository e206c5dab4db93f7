import jwt
from datetime import datetime, timedelta

from attendance_live.core.config import settings


def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    """
    외부 인증 서비스와 같은 형식({"sub", "role", "exp"})의 access token 을 발급합니다.
    운영에서는 인증 서비스가 발급하고, 여기서는 테스트/관리 스크립트용으로 사용합니다.
    """
    to_encode = data.copy()
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    expire = datetime.utcnow() + timedelta(minutes=minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_mentor_access_token(mentor_id: int) -> str:
    return create_access_token({"sub": str(mentor_id), "role": "mentor"})


def create_student_access_token(student_uid: str) -> str:
    return create_access_token({"sub": student_uid, "role": "student"})
